import asyncio

from guide_engine.analytics import RecordingAnalytics
from guide_engine.config import EngineConfig
from guide_engine.guided import GuidedOutcome
from guide_engine.models import ButtonAction, HighlightAction, Mode, Section, Step, StepKind
from guide_engine.persistence import InMemoryCompletionStore
from guide_engine.runner import CancellationToken
from guide_engine.soup_page import SoupPage

PAGE = """
<div id="app">
  <button id="cancel">Cancel</button>
  <div id="card" class="clickable">Card</div>
</div>
"""


def setup(make_controller, *steps, **kwargs):
    page = SoupPage(PAGE)
    controller = make_controller(Section(id="setup", steps=steps), page, **kwargs)
    controller.mount()
    return controller, page


def cancel_step(step_id="a", **fields):
    return Step(id=step_id, action=ButtonAction(target="Cancel"), **fields)


def guided_step(target="#card", **fields):
    return Step(id="g", kind=StepKind.GUIDED, internal_actions=(HighlightAction(target=target),), **fields)


async def until_waiting(runner):
    while not runner.is_waiting:
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Manual execution
# ---------------------------------------------------------------------------


def test_execute_show_only_previews(make_controller):
    sink = RecordingAnalytics()
    controller, page = setup(make_controller, cancel_step(), analytics_sink=sink)
    state = asyncio.run(controller.execute_step("a", Mode.SHOW))

    assert state.is_completed is False
    assert page.highlights == [("button#cancel", None)]
    assert page.clicks == []
    assert sink.named("step_execute") == [{"sectionId": "setup", "stepId": "a", "mode": "show"}]


def test_execute_do_completes(make_controller):
    controller, page = setup(make_controller, cancel_step())
    state = asyncio.run(controller.execute_step("a"))
    assert state.is_completed is True
    assert page.clicks == ["button#cancel"]
    assert controller.is_completed
    assert controller.monitor.is_enabled()


def test_execute_blocked_step_does_nothing(make_controller):
    controller, page = setup(make_controller, cancel_step(), cancel_step("b"))
    state = asyncio.run(controller.execute_step("b"))
    assert state.is_enabled is False
    assert page.clicks == []


def test_execute_verify_failure_records_error(make_controller):
    controller, _ = setup(make_controller, cancel_step(verify="on-page:/nowhere"))
    state = asyncio.run(controller.execute_step("a"))
    assert state.is_completed is False
    assert state.error == "Verification failed: Current page '/' does not match required path '/nowhere'"


def test_execute_verify_sees_step_target(make_controller):
    controller, page = setup(make_controller, cancel_step(verify="exists-reftarget"))
    state = asyncio.run(controller.execute_step("a"))
    assert state.is_completed is True
    assert state.error is None
    assert page.clicks == ["button#cancel"]


def test_execute_composite_checks_action_requirements(make_controller):
    step = Step(
        id="fill",
        kind=StepKind.COMPOSITE,
        internal_actions=(
            ButtonAction(target="Cancel"),
            HighlightAction(target="#card", requirements="has-plugin:missing-panel"),
        ),
    )
    controller, page = setup(make_controller, step)
    state = asyncio.run(controller.execute_step("fill"))
    assert state.is_completed is False
    assert state.error.startswith("Internal action 2 requirements not met")
    assert page.clicks == ["button#cancel"]
    assert controller.monitor.is_enabled()


def test_user_completes_step_by_hand(make_controller):
    controller, page = setup(make_controller, cancel_step())

    async def scenario():
        await controller.check_all()
        await page.user_click("#cancel")

    asyncio.run(scenario())
    assert controller.completed_steps == {"a"}
    assert controller.detections["a"].progress == 1


# ---------------------------------------------------------------------------
# Guided steps
# ---------------------------------------------------------------------------


def test_guided_step_completes_on_user_click(make_controller):
    controller, page = setup(make_controller, guided_step())

    async def scenario():
        task = asyncio.create_task(controller.execute_step("g"))
        await until_waiting(controller.guided["g"])
        await page.user_click("#card")
        return await task

    state = asyncio.run(scenario())
    assert state.is_completed is True
    assert ("div#card", None) in page.highlights


def test_guided_step_times_out(make_controller):
    controller, _ = setup(make_controller, guided_step(), cfg=EngineConfig.instant(guided_action_timeout=0.01))
    state = asyncio.run(controller.execute_step("g"))
    assert state.is_completed is False
    assert state.is_enabled is True


def test_instruction_only_action_waits_for_confirm(make_controller):
    controller, page = setup(make_controller, guided_step(target=""))
    runner = controller.guided["g"]

    async def scenario():
        task = asyncio.create_task(controller.execute_step("g"))
        await until_waiting(runner)
        assert runner.confirm() is True
        return await task

    assert asyncio.run(scenario()).is_completed is True
    assert page.highlights == []
    assert runner.confirm() is False


def test_guided_skip(make_controller):
    controller, _ = setup(make_controller, guided_step(skippable=True))
    runner = controller.guided["g"]

    async def scenario():
        task = asyncio.create_task(controller.execute_step("g"))
        await until_waiting(runner)
        runner.skip()
        return await task

    assert asyncio.run(scenario()).is_skipped is True


def test_guided_cancel_token(make_controller):
    controller, _ = setup(make_controller, guided_step())
    runner = controller.guided["g"]
    token = CancellationToken()

    async def scenario():
        task = asyncio.create_task(runner.run(token))
        await until_waiting(runner)
        token.cancel()
        return await task

    assert asyncio.run(scenario()) is GuidedOutcome.CANCELLED
    assert controller.monitor.hover_targets == {}


# ---------------------------------------------------------------------------
# Reset, restore and unmount
# ---------------------------------------------------------------------------


def test_reset_clears_progress(make_controller):
    store = InMemoryCompletionStore()
    controller, _ = setup(make_controller, cancel_step(), cancel_step("b"), store=store)

    async def scenario():
        await controller.run()
        await controller.settle()
        assert controller.coordinator.is_section_completed("setup")
        return await controller.reset()

    first, second = asyncio.run(scenario())
    assert first.is_enabled is True
    assert second.is_blocked
    assert controller.completed_steps == set()
    assert store.get_completed("guide", "setup") == set()
    assert not controller.coordinator.is_section_completed("setup")


def test_mount_restores_completed_section(make_controller):
    store = InMemoryCompletionStore()
    store.set_completed("guide", "setup", {"a", "b"})
    controller, _ = setup(make_controller, cancel_step(), cancel_step("b"), store=store)

    assert controller.is_completed
    assert controller.resume_index == 2
    assert controller.coordinator.is_section_completed("setup")
    assert controller.coordinator.get_state("a").explanation == "Completed"


def test_unmount_releases_everything(make_controller):
    controller, _ = setup(make_controller, cancel_step(), guided_step())
    monitor = controller.monitor
    assert monitor.reference_count == 1

    controller.unmount()
    assert monitor.reference_count == 0
    assert controller.checkers == {}
    assert controller.coordinator.get_state("a") is None
