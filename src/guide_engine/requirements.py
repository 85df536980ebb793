# requirements.py
# Requirement evaluator: interprets comma-separated predicate strings.
#
# Each token routes to exactly one checker, by exact name or by `prefix:`.
# Tokens are evaluated concurrently and ANDed. A checker signals a false
# predicate by raising RequirementFailure; anything else it raises, and any
# timeout, is folded into a failed CheckResult. evaluate() never raises.

import asyncio
import re
from typing import Any, Awaitable, Callable, Protocol

from guide_engine import display
from guide_engine.environment import Environment
from guide_engine.errors import RequirementFailure, RequirementTimeout
from guide_engine.models import Action, ActionKind, CheckResult, FixType, RequirementsResult
from guide_engine.page import LivePage, find_buttons_by_text

NAV_MENU_SELECTORS = (
    'div[data-testid="data-testid navigation mega-menu"]',
    'ul[aria-label="Navigation"]',
    'div[data-testid*="navigation"]',
    'nav[aria-label="Navigation"]',
    'ul[aria-label="Main navigation"]',
)

NAV_ITEM_TESTID = "data-testid Nav menu item"
_HREF_IN_SELECTOR = re.compile(r"href\s*=\s*['\"]([^'\"]+)['\"]")


class SectionStatus(Protocol):
    def is_section_completed(self, section_id: str) -> bool: ...


class CheckContext:
    """Everything a checker may read. Built fresh for every evaluate() call."""

    def __init__(
        self,
        page: LivePage,
        environment: Environment,
        sections: SectionStatus | None = None,
        action: Action | None = None,
    ):
        self.page = page
        self.environment = environment
        self.sections = sections
        self.action = action


Checker = Callable[[CheckContext, str], Awaitable[Any]]


def split_requirements(requirements: str | None) -> list[str]:
    return [token.strip() for token in (requirements or "").split(",") if token.strip()]


def parse_version(version: str) -> tuple[int, int, int]:
    """Major/minor/patch triple. Missing or non-numeric parts count as zero."""
    parts = []
    for piece in version.strip().lstrip("vV").split(".")[:3]:
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group()) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


# ---------------------------------------------------------------------------
# Page checks
# ---------------------------------------------------------------------------


async def _check_exists_reftarget(ctx: CheckContext, _: str):
    action = ctx.action
    if action is None or not action.target:
        raise RequirementFailure("Element not found")

    if action.kind is ActionKind.BUTTON:
        buttons = await find_buttons_by_text(ctx.page, action.target)
        if not buttons:
            raise RequirementFailure(f'No buttons found containing text: "{action.target}"')
        return len(buttons)

    if await ctx.page.query_all(action.target):
        return None

    if NAV_ITEM_TESTID in action.target:
        href = _HREF_IN_SELECTOR.search(action.target)
        if href:
            raise RequirementFailure(
                "Element not found",
                fix_type=FixType.EXPAND_PARENT_NAVIGATION,
                target_href=href.group(1),
            )
    raise RequirementFailure("Element not found")


async def _check_navmenu_open(ctx: CheckContext, _: str):
    for selector in NAV_MENU_SELECTORS:
        if await ctx.page.query_all(selector):
            return selector
    raise RequirementFailure(
        "Navigation menu not detected - menu may be closed or selector mismatch",
        fix_type=FixType.NAVIGATION,
    )


async def _check_on_page(ctx: CheckContext, path: str):
    current = await ctx.page.current_path()
    if path not in current:
        raise RequirementFailure(
            f"Current page '{current}' does not match required path '{path}'",
            fix_type=FixType.LOCATION,
            target_href=path,
        )
    return current


async def _check_section_completed(ctx: CheckContext, section_id: str):
    if ctx.sections is not None and ctx.sections.is_section_completed(section_id):
        return section_id
    marker = await ctx.page.query_all(f'[id="{section_id}"].completed')
    if not marker:
        raise RequirementFailure(f"Section '{section_id}' must be completed first")
    return section_id


# ---------------------------------------------------------------------------
# User checks
# ---------------------------------------------------------------------------


async def _check_is_admin(ctx: CheckContext, _: str):
    user = await ctx.environment.user()
    if user is None:
        raise RequirementFailure("Unable to determine user admin status")
    if not user.is_grafana_admin:
        raise RequirementFailure("User is not an admin")
    return user


async def _check_permission(ctx: CheckContext, permission: str):
    if not await ctx.environment.has_permission(permission):
        raise RequirementFailure(f"Missing permission: {permission}")


async def _check_role(ctx: CheckContext, role: str):
    user = await ctx.environment.user()
    if user is None:
        raise RequirementFailure("User information not available")

    required = role.lower()
    if required in ("admin", "grafana-admin"):
        granted = user.is_grafana_admin
    elif required == "editor":
        granted = user.org_role in ("Editor", "Admin") or user.is_grafana_admin
    elif required == "viewer":
        granted = bool(user.org_role)
    else:
        granted = (user.org_role or "").lower() == required

    if not granted:
        raise RequirementFailure(
            f"User role '{user.org_role or 'none'}' does not meet requirement '{required}'"
        )
    return user


# ---------------------------------------------------------------------------
# Instance checks
# ---------------------------------------------------------------------------


async def _check_has_datasources(ctx: CheckContext, _: str):
    sources = await ctx.environment.datasources()
    if not sources:
        raise RequirementFailure("No data sources found")
    return sources


async def _check_datasource(ctx: CheckContext, wanted: str):
    wanted = wanted.lower()
    if wanted.startswith("type:"):
        wanted = wanted[len("type:"):]
    for source in await ctx.environment.datasources():
        if wanted in (source.name.lower(), source.uid.lower(), source.type.lower()):
            return source
    raise RequirementFailure(f"No data source found with name/uid/type: {wanted}")


async def _check_plugin(ctx: CheckContext, plugin_id: str):
    if not any(p.id == plugin_id for p in await ctx.environment.plugins()):
        raise RequirementFailure(f"Plugin '{plugin_id}' is not installed or enabled")


async def _check_dashboard_named(ctx: CheckContext, name: str):
    for dashboard in await ctx.environment.search_dashboards(name):
        if dashboard.title.lower() == name.lower():
            return dashboard
    raise RequirementFailure(f"Dashboard named '{name}' not found")


async def _check_feature(ctx: CheckContext, feature: str):
    if not (await ctx.environment.feature_toggles()).get(feature):
        raise RequirementFailure(f"Feature toggle '{feature}' is not enabled")


async def _check_environment(ctx: CheckContext, env: str):
    required = env.lower()
    current = ((await ctx.environment.build_info()).env or "unknown").lower()
    if current != required:
        raise RequirementFailure(f"Current environment '{current}' does not match required '{required}'")


async def _check_min_version(ctx: CheckContext, version: str):
    current = (await ctx.environment.build_info()).version or "0.0.0"
    if parse_version(current) < parse_version(version):
        raise RequirementFailure(
            f"Current version '{current}' does not meet minimum requirement '{version}'"
        )
    return current


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

# token -> (checker, label used in "<label> check failed: ..." messages)
EXACT_CHECKS: dict[str, tuple[Checker, str]] = {
    "exists-reftarget": (_check_exists_reftarget, "Element"),
    "navmenu-open": (_check_navmenu_open, "Navigation menu"),
    "has-datasources": (_check_has_datasources, "Data sources"),
    "is-admin": (_check_is_admin, "Admin"),
}

PREFIX_CHECKS: dict[str, tuple[Checker, str]] = {
    "has-permission:": (_check_permission, "Permission"),
    "has-role:": (_check_role, "Role"),
    "has-datasource:": (_check_datasource, "Data source"),
    "has-plugin:": (_check_plugin, "Plugin"),
    "has-dashboard-named:": (_check_dashboard_named, "Dashboard"),
    "on-page:": (_check_on_page, "Page"),
    "has-feature:": (_check_feature, "Feature"),
    "in-environment:": (_check_environment, "Environment"),
    "min-version:": (_check_min_version, "Version"),
    "section-completed:": (_check_section_completed, "Section completion"),
}


def route(token: str) -> tuple[Checker, str, str] | None:
    """(checker, label, argument) for a token, or None if unrecognised."""
    if token in EXACT_CHECKS:
        checker, label = EXACT_CHECKS[token]
        return checker, label, ""
    for prefix, (checker, label) in PREFIX_CHECKS.items():
        if token.startswith(prefix):
            return checker, label, token[len(prefix):]
    return None


class RequirementEvaluator:
    def __init__(
        self,
        page: LivePage,
        environment: Environment,
        sections: SectionStatus | None = None,
        timeout: float = 3.0,
    ):
        self.page = page
        self.environment = environment
        self.sections = sections
        self.timeout = timeout

    async def evaluate(self, requirements: str | None, action: Action | None = None) -> RequirementsResult:
        tokens = split_requirements(requirements)
        if not tokens:
            return RequirementsResult(requirements=requirements or "", passed=True)

        ctx = CheckContext(self.page, self.environment, self.sections, action)
        results = await asyncio.gather(*(self._run(ctx, token) for token in tokens))
        return RequirementsResult(
            requirements=requirements or "",
            passed=all(r.passed for r in results),
            results=list(results),
        )

    async def _run(self, ctx: CheckContext, token: str) -> CheckResult:
        routed = route(token)
        if routed is None:
            display.unknown_requirement(token)
            return CheckResult(requirement=token, passed=False, error=f"Unknown requirement: {token}")

        checker, label, argument = routed
        try:
            context = await asyncio.wait_for(checker(ctx, argument), timeout=self.timeout or None)
        except RequirementFailure as e:
            return CheckResult(
                requirement=token,
                passed=False,
                error=str(e),
                can_fix=e.fix_type is not None,
                fix_type=e.fix_type,
                target_href=e.target_href,
            )
        except asyncio.TimeoutError:
            return CheckResult(
                requirement=token,
                passed=False,
                error=str(RequirementTimeout("Requirements check timed out")),
            )
        except Exception as e:
            return CheckResult(requirement=token, passed=False, error=f"{label} check failed: {e}")
        return CheckResult(requirement=token, passed=True, context=context)
