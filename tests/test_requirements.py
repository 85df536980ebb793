import asyncio
from unittest.mock import MagicMock

import pytest

from guide_engine.environment import StaticEnvironment
from guide_engine.models import ButtonAction, FixType, HighlightAction
from guide_engine.requirements import RequirementEvaluator, parse_version, route, split_requirements
from guide_engine.soup_page import SoupPage

PAGE = """
<div id="app">
  <button id="save">Save dashboard now</button>
  <div id="intro" class="section completed"></div>
  <a data-testid="data-testid Nav menu item" href="/dashboards">Dashboards</a>
</div>
"""


def evaluate(env, requirements, action=None, page=None, sections=None, timeout=1.0):
    page = page or SoupPage(PAGE, url="http://localhost:3000/dashboards")
    evaluator = RequirementEvaluator(page, env, sections=sections, timeout=timeout)
    return asyncio.run(evaluator.evaluate(requirements, action))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_split_requirements_drops_blanks():
    assert split_requirements(" is-admin, ,has-datasources ") == ["is-admin", "has-datasources"]
    assert split_requirements(None) == []


def test_parse_version():
    assert parse_version("10.2") == (10, 2, 0)
    assert parse_version("v11.0.0-beta1") == (11, 0, 0)
    assert parse_version("") == (0, 0, 0)


def test_route_prefers_exact_then_prefix():
    assert route("is-admin")[2] == ""
    assert route("has-role:editor")[2] == "editor"
    assert route("no-such-thing") is None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def test_empty_requirements_pass(env):
    result = evaluate(env, "")
    assert result.passed is True
    assert result.results == []


def test_has_datasources_with_none_configured():
    result = evaluate(StaticEnvironment(), "has-datasources")
    assert result.passed is False
    assert result.results[0].error == "No data sources found"


def test_min_version_below_minimum(env):
    result = evaluate(env, "min-version:11.0.0")
    assert result.passed is False
    assert "does not meet minimum requirement" in result.error_message

    assert evaluate(env, "min-version:9.5").passed is True


def test_unknown_token_fails_closed(env):
    result = evaluate(env, "bogus-token")
    assert result.passed is False
    assert result.results[0].error == "Unknown requirement: bogus-token"


def test_tokens_are_anded(env):
    assert evaluate(env, "is-admin, has-plugin:grafana-clock-panel").passed is True

    result = evaluate(env, "is-admin, has-plugin:old-panel")
    assert result.passed is False
    assert [r.requirement for r in result.failed] == ["has-plugin:old-panel"]
    assert result.error_message == "Plugin 'old-panel' is not installed or enabled"


def test_user_and_instance_checks(env):
    assert evaluate(env, "has-datasource:type:prometheus").passed is True
    assert evaluate(env, "has-datasource:PROM").passed is True
    assert evaluate(env, "has-datasource:loki").passed is False
    assert evaluate(env, "has-permission:dashboards:create").passed is True
    assert evaluate(env, "has-permission:users:write").passed is False
    assert evaluate(env, "has-dashboard-named:home overview").passed is True
    assert evaluate(env, "has-feature:newNav").passed is True
    assert evaluate(env, "has-feature:oldThing").passed is False
    assert evaluate(env, "in-environment:production").passed is True
    assert evaluate(env, "in-environment:dev").passed is False


def test_role_hierarchy(env):
    env.current_user = env.current_user.model_copy(update={"org_role": "Editor", "is_grafana_admin": False})
    assert evaluate(env, "has-role:editor").passed is True
    assert evaluate(env, "has-role:viewer").passed is True

    result = evaluate(env, "has-role:admin")
    assert result.error_message == "User role 'Editor' does not meet requirement 'admin'"


def test_is_admin_without_user():
    result = evaluate(StaticEnvironment(current_user=None), "is-admin")
    assert result.error_message == "Unable to determine user admin status"


# ---------------------------------------------------------------------------
# Page checks and fix hints
# ---------------------------------------------------------------------------


def test_on_page_mismatch_is_fixable(env):
    result = evaluate(env, "on-page:/explore")
    assert result.passed is False
    assert result.fixable.fix_type is FixType.LOCATION
    assert result.fixable.target_href == "/explore"

    assert evaluate(env, "on-page:/dashboards").passed is True


def test_navmenu_open(env):
    result = evaluate(env, "navmenu-open")
    assert result.fixable.fix_type is FixType.NAVIGATION

    page = SoupPage('<nav aria-label="Navigation"></nav>')
    assert evaluate(env, "navmenu-open", page=page).passed is True


def test_exists_reftarget_button_substring(env):
    result = evaluate(env, "exists-reftarget", ButtonAction(target="save DASHBOARD"))
    assert result.passed is True

    result = evaluate(env, "exists-reftarget", ButtonAction(target="Delete"))
    assert result.error_message == 'No buttons found containing text: "Delete"'


def test_exists_reftarget_hidden_nav_link_offers_expansion(env):
    selector = 'a[data-testid="data-testid Nav menu item"][href="/alerting/list"]'
    result = evaluate(env, "exists-reftarget", HighlightAction(target=selector))
    assert result.passed is False
    assert result.fixable.fix_type is FixType.EXPAND_PARENT_NAVIGATION
    assert result.fixable.target_href == "/alerting/list"


def test_exists_reftarget_without_action(env):
    assert evaluate(env, "exists-reftarget").error_message == "Element not found"


def test_section_completed_uses_status_then_dom(env):
    sections = MagicMock()
    sections.is_section_completed.return_value = True
    assert evaluate(env, "section-completed:setup", sections=sections).passed is True

    sections.is_section_completed.return_value = False
    assert evaluate(env, "section-completed:intro", sections=sections).passed is True
    result = evaluate(env, "section-completed:setup", sections=sections)
    assert result.error_message == "Section 'setup' must be completed first"


# ---------------------------------------------------------------------------
# Failure folding
# ---------------------------------------------------------------------------


class SlowEnvironment(StaticEnvironment):
    async def datasources(self):
        await asyncio.sleep(5)
        return []


class BrokenEnvironment(StaticEnvironment):
    async def datasources(self):
        raise RuntimeError("boom")


def test_timeout_becomes_failure():
    result = evaluate(SlowEnvironment(), "has-datasources", timeout=0.01)
    assert result.passed is False
    assert result.error_message == "Requirements check timed out"


def test_checker_exception_becomes_failure():
    result = evaluate(BrokenEnvironment(), "has-datasources")
    assert result.passed is False
    assert result.error_message == "Data sources check failed: boom"


@pytest.mark.parametrize("token", ["is-admin", "has-datasources", "has-plugin:grafana-clock-panel"])
def test_single_token_passes(env, token):
    assert evaluate(env, token).passed is True
