import asyncio
import json
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from guide_engine.errors import GuideParseError
from guide_engine.guide import Guide, load_guide, parse_guide
from guide_engine.models import ActionKind, StepKind
from guide_engine.observers import UrlChangeSource
from guide_engine.runner import RunStatus
from guide_engine.session import GuideSession
from guide_engine.soup_page import SoupPage

PAGE = """
<div id="app">
  <button id="new">New dashboard</button>
  <input id="title">
  <a id="explore" href="/explore">Explore</a>
</div>
"""

GUIDE = {
    "id": "first-dashboard",
    "title": "Build your first dashboard",
    "sections": [
        {
            "id": "setup",
            "steps": [
                {"id": "open", "action": {"kind": "button", "target": "New dashboard"}},
                {
                    "id": "name",
                    "kind": "composite",
                    "internal_actions": [
                        {"kind": "formfill", "target": "#title", "value": "Sales"},
                        {"kind": "highlight", "target": "#explore"},
                    ],
                },
            ],
        },
        {
            "id": "explore",
            "requirements": "section-completed:setup",
            "steps": [
                {
                    "id": "beta",
                    "requirements": "has-feature:betaThing",
                    "action": {"kind": "navigate", "target": "/explore"},
                }
            ],
        },
    ],
}


@pytest.fixture
def guide():
    return Guide.model_validate(GUIDE)


# ---------------------------------------------------------------------------
# Guide documents
# ---------------------------------------------------------------------------


def test_parse_guide(guide):
    parsed = parse_guide(json.dumps(GUIDE))
    assert parsed == guide
    assert parsed.content_key == "first-dashboard"
    assert parsed.step_count == 3
    name = parsed.section("setup").steps[1]
    assert name.kind is StepKind.COMPOSITE
    assert [a.kind for a in name.internal_actions] == [ActionKind.FORMFILL, ActionKind.HIGHLIGHT]

    with pytest.raises(KeyError):
        parsed.section("missing")


def test_invalid_guide_chains_validation_error():
    with pytest.raises(GuideParseError) as excinfo:
        parse_guide('{"id": "x", "sections": [{"id": "s", "steps": [{"id": "a"}]}]}')
    assert isinstance(excinfo.value.__cause__, ValidationError)


def test_duplicate_ids_are_rejected():
    doc = {
        "id": "x",
        "sections": [
            {"id": "one", "steps": [{"id": "a", "action": {"kind": "hover", "target": "#a"}}]},
            {"id": "two", "steps": [{"id": "a", "action": {"kind": "hover", "target": "#a"}}]},
        ],
    }
    with pytest.raises(GuideParseError, match="Duplicate step id"):
        parse_guide(json.dumps(doc))


def test_load_guide(tmp_path, guide):
    path = tmp_path / "guide.json"
    path.write_text(json.dumps(GUIDE), encoding="utf-8")
    assert load_guide(path) == guide

    with pytest.raises(GuideParseError, match="Cannot read guide"):
        load_guide(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(GuideParseError, match="not valid JSON"):
        load_guide(broken)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_session_runs_every_section(guide, env, config):
    env.toggles["betaThing"] = True
    page = SoupPage(PAGE)
    session = GuideSession(guide, page, environment=env, config=config)

    async def scenario():
        await session.mount()
        assert session.coordinator.get_state("open").is_enabled is True
        assert session.coordinator.get_state("name").is_blocked
        results = await session.run_all()
        progress = session.progress()
        await session.unmount()
        return results, progress

    results, progress = asyncio.run(scenario())
    assert [r.status for r in results] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    assert progress == 100.0
    assert page.fills == [("input#title", "Sales")]
    assert page.routes == ["/explore", "/explore"]
    assert not session.coordinator.is_observing


def test_run_all_stops_at_first_incomplete_section(guide, env, config):
    page = SoupPage(PAGE)
    session = GuideSession(guide, page, environment=env, config=config)

    async def scenario():
        await session.mount()
        results = await session.run_all()
        progress = session.progress()
        await session.unmount()
        return results, progress

    results, progress = asyncio.run(scenario())
    assert [r.section_id for r in results] == ["setup", "explore"]
    assert results[-1].status is RunStatus.HALTED
    assert progress == pytest.approx(66.7)


def test_manual_change_triggers_recheck(guide, env, config):
    session = GuideSession(guide, SoupPage(PAGE), environment=env, config=config)

    async def scenario():
        await session.mount()
        assert session.coordinator.get_state("beta").is_enabled is False
        env.toggles["betaThing"] = True
        assert session.changes.notify() is True
        await session.coordinator.scheduler.flush()
        state = session.coordinator.get_state("beta")
        await session.unmount()
        return state

    assert asyncio.run(scenario()).is_enabled is True


def test_url_changes_are_polled():
    page = SoupPage(PAGE)
    changed = MagicMock()
    source = UrlChangeSource(page, interval=0.01)

    async def scenario():
        source.start(changed)
        await asyncio.sleep(0.03)
        await page.push_route("/explore")
        await asyncio.sleep(0.1)
        source.stop()

    asyncio.run(scenario())
    changed.assert_called()
    assert source.last_url == "http://localhost:3000/explore"
