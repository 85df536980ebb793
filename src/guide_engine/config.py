# config.py
# Engine timing and behaviour knobs. All durations are in seconds.
#
# Values come from defaults, then GUIDE_ENGINE_* environment variables
# (a local .env is loaded first, the same way the rest of the tooling does).

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

ENV_PREFIX = "GUIDE_ENGINE_"


class EngineConfig(BaseModel):
    # Requirement evaluation
    requirement_timeout: float = Field(3.0, description="Per-check time bound.")
    retry_delay: float = Field(0.3, description="Delay between requirement retries.")
    max_retries: int = Field(3, ge=0)

    # Visual durations
    highlight_duration: float = 2.5
    hover_duration: float = 2.0

    # Section choreography, polled every tick_interval so cancellation lands mid-wait
    show_phase_ticks: int = 30
    between_steps_ticks: int = 18
    show_to_do_ticks: int = 18
    tick_interval: float = 0.1
    composite_action_delay: float = Field(1.8, description="Pause between internal actions.")

    # Remediation settling
    navigation_settle: float = 0.3
    dock_settle: float = 0.2
    fix_settle: float = Field(0.2, description="Wait before re-checking after a fix.")
    expansion_settle: float = 0.3

    # Reactive re-evaluation and observation
    reactive_window: float = Field(0.15, description="Coalescing window for reactive checks.")
    url_poll_interval: float = 2.0

    # Auto-detection
    action_debounce: float = 0.05
    action_queue_size: int = Field(10, ge=1)
    guided_action_timeout: float = 120.0

    quiet: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Build a config from GUIDE_ENGINE_<FIELD> variables, then explicit overrides."""
        values: dict = {}
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)

    @classmethod
    def instant(cls, **overrides) -> "EngineConfig":
        """Zero-delay config for dry runs and tests."""
        zeroed = {
            name: 0
            for name, field in cls.model_fields.items()
            if field.annotation is float and name != "requirement_timeout"
        }
        zeroed.update(
            show_phase_ticks=0,
            between_steps_ticks=0,
            show_to_do_ticks=0,
            max_retries=0,
            requirement_timeout=1.0,
            guided_action_timeout=1.0,
            quiet=True,
        )
        zeroed.update(overrides)
        return cls(**zeroed)
