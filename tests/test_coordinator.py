import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from guide_engine.coordinator import StepCoordinator
from guide_engine.models import CompletionReason
from guide_engine.observers import ManualChangeSource, PageMutationSource, is_significant
from guide_engine.page import MutationRecord
from guide_engine.scheduler import ReevaluationScheduler
from guide_engine.soup_page import SoupPage


@pytest.fixture
def coordinator(config):
    coordinator = StepCoordinator(config)
    for index, step_id in enumerate(("a", "b", "c")):
        coordinator.register_step(step_id, "setup", index)
    return coordinator


# ---------------------------------------------------------------------------
# Eligibility and state rules
# ---------------------------------------------------------------------------


def test_only_first_step_is_eligible(coordinator):
    assert coordinator.is_eligible("a")
    assert not coordinator.is_eligible("b")
    assert not coordinator.is_eligible("missing")
    assert coordinator.section_steps("setup") == ["a", "b", "c"]


def test_ineligible_step_cannot_be_enabled(coordinator):
    state = coordinator.update_step("b", is_enabled=True)
    assert state.is_enabled is False


def test_completed_step_is_disabled_with_reason(coordinator):
    coordinator.update_step("a", is_enabled=True)
    state = coordinator.update_step("a", is_completed=True)
    assert state.is_enabled is False
    assert state.completion_reason is CompletionReason.MANUAL
    assert coordinator.is_eligible("b")
    assert coordinator.update_step("b", is_enabled=True).is_enabled is True


def test_skipped_completion_reason(coordinator):
    state = coordinator.update_step("a", is_completed=True, is_skipped=True)
    assert state.completion_reason is CompletionReason.SKIPPED


def test_objectives_completion_is_sticky(coordinator):
    coordinator.update_step("a", is_completed=True, completion_reason=CompletionReason.OBJECTIVES)
    state = coordinator.update_step("a", is_completed=False, completion_reason=CompletionReason.NONE, explanation="x")
    assert state.is_completed is True
    assert state.completion_reason is CompletionReason.OBJECTIVES
    assert state.explanation == "x"

    fresh = coordinator.reset_step("a")
    assert fresh.is_completed is False
    assert fresh.completion_reason is CompletionReason.NONE


def test_uncompleting_locks_later_steps(coordinator):
    coordinator.update_step("a", is_completed=True)
    coordinator.update_step("b", is_enabled=True)
    coordinator.mark_section_completed("setup")

    coordinator.update_step("a", is_completed=False)
    assert coordinator.get_state("b").is_enabled is False
    assert not coordinator.is_section_completed("setup")


def test_non_sequential_sections(config):
    coordinator = StepCoordinator(config)
    coordinator.register_step("x", "free", 0, sequential=False)
    coordinator.register_step("y", "free", 1, sequential=False)
    assert coordinator.update_step("y", is_enabled=True).is_enabled is True


def test_listeners_and_unknown_steps(coordinator):
    listener = MagicMock()
    unsubscribe = coordinator.subscribe(listener)
    coordinator.update_step("a", explanation="hi")
    listener.assert_called_once()
    assert listener.call_args.args[0] == "a"

    unsubscribe()
    coordinator.update_step("a", explanation="again")
    listener.assert_called_once()

    with pytest.raises(KeyError):
        coordinator.update_step("missing", is_enabled=True)


def test_unregister_section(coordinator):
    coordinator.mark_section_completed("setup")
    coordinator.unregister_section("setup")
    assert coordinator.get_state("a") is None
    assert not coordinator.is_registered("a")
    assert not coordinator.is_section_completed("setup")


# ---------------------------------------------------------------------------
# Reactive checks
# ---------------------------------------------------------------------------


def test_reactive_checks_coalesce(coordinator):
    first, second = AsyncMock(), AsyncMock()
    coordinator.register_checker("a", first)
    coordinator.register_checker("b", second)

    async def scenario():
        coordinator.trigger_reactive_check()
        coordinator.trigger_reactive_check()
        await coordinator.scheduler.flush()

    asyncio.run(scenario())
    assert first.await_count == 1
    assert second.await_count == 1
    assert coordinator.scheduler.drain_count == 1


def test_reactive_check_skips_completed_steps(coordinator):
    coordinator.update_step("a", is_completed=True)
    first, second = AsyncMock(), AsyncMock()
    coordinator.register_checker("a", first)
    coordinator.register_checker("b", second)

    async def scenario():
        coordinator.trigger_reactive_check()
        await coordinator.scheduler.flush()

    asyncio.run(scenario())
    first.assert_not_awaited()
    second.assert_awaited_once()


def test_failing_checker_does_not_stop_others(coordinator):
    coordinator.register_checker("a", AsyncMock(side_effect=RuntimeError("boom")))
    healthy = AsyncMock()
    coordinator.register_checker("b", healthy)

    async def scenario():
        coordinator.trigger_reactive_check()
        await coordinator.scheduler.flush()

    asyncio.run(scenario())
    healthy.assert_awaited_once()


def test_request_during_drain_runs_one_trailing_drain():
    calls = []

    async def drain():
        calls.append(len(calls))
        if len(calls) == 1:
            scheduler.request()
            scheduler.request()

    scheduler = ReevaluationScheduler(drain, window=0)

    async def scenario():
        scheduler.request()
        await scheduler.flush()

    asyncio.run(scenario())
    assert calls == [0, 1]
    assert scheduler.drain_count == 2
    assert not scheduler.pending


# ---------------------------------------------------------------------------
# Change sources
# ---------------------------------------------------------------------------


def test_manual_change_source(coordinator):
    source = ManualChangeSource()
    assert source.notify() is False

    coordinator.start_observing([source])
    coordinator.start_observing([ManualChangeSource()])
    assert coordinator.is_observing
    assert source.notify() is True
    assert coordinator.scheduler.pending

    coordinator.stop_observing()
    coordinator.stop_observing()
    assert source.notify() is False
    assert not coordinator.scheduler.pending


def test_mutation_source_filters_changes():
    page = SoupPage('<nav aria-label="Navigation"><ul id="menu"></ul></nav><div id="plain"></div>')
    on_change = MagicMock()
    source = PageMutationSource(page)
    source.start(on_change)

    async def scenario():
        await page.set_attribute("#plain", "title", "x")
        assert on_change.call_count == 0
        await page.set_attribute("#plain", "aria-expanded", "true")
        await page.set_attribute("#plain", "class", "open")
        assert on_change.call_count == 0
        await page.set_attribute("#menu", "title", "x")
        assert on_change.call_count == 0
        await page.set_attribute("#menu", "aria-expanded", "true")
        assert on_change.call_count == 1
        await page.append_html("#menu", "<li>Alerting</li>")
        assert on_change.call_count == 2
        source.stop()
        await page.set_attribute("#menu", "class", "open")
        assert on_change.call_count == 2

    asyncio.run(scenario())


def test_hotspot_mutations_are_significant():
    page = SoupPage('<div id="box"><a id="conn" href="/connections/new">New</a></div>')

    async def scenario():
        link = await page.query("#conn")
        box = await page.query("#box")
        assert await is_significant(MutationRecord(type="childList", target=link))
        assert not await is_significant(MutationRecord(type="childList", target=box))

    asyncio.run(scenario())
