# explanations.py
# Turns requirement tokens into messages a user can act on.
#
# Priority for any explanation: author hint, then mapped token message,
# then the checker's raw error, then a generic fallback.

import re

GENERIC_FALLBACK = "Requirements not met. Please check the page state and try again."

REQUIREMENT_MESSAGES: dict[str, str] = {
    # Navigation
    "navmenu-open": (
        "The navigation menu needs to be open and docked. "
        'Click "Fix this" to automatically open and dock the navigation menu.'
    ),
    "navmenu-closed": "Please close the navigation menu first.",
    # Authentication
    "is-admin": "You need administrator privileges to perform this action. Please log in as an admin user.",
    "is-logged-in": "You need to be logged in to continue. Please sign in to your Grafana account.",
    "is-editor": "You need editor permissions or higher to perform this action.",
    # Plugins
    "has-plugin": "A required plugin needs to be installed first.",
    "plugin-enabled": "The required plugin needs to be enabled in your Grafana instance.",
    # Dashboards
    "dashboard-exists": "A dashboard needs to be created or selected first.",
    "dashboard-edit-mode": 'The dashboard needs to be in edit mode. Look for the "Edit" button.',
    "panel-selected": "Please select or create a panel first.",
    # Data sources
    "datasource-configured": "A data source needs to be configured first.",
    "datasource-connected": "Please ensure the data source connection is working.",
    "has-datasources": "At least one data source needs to be configured.",
    # Location
    "on-page": "Navigate to the correct page first.",
    "correct-url": "You need to be on the right page to continue.",
    # Forms
    "form-valid": "Please fill out all required form fields correctly.",
    "field-focused": "Click on the specified form field first.",
    # Page state
    "element-visible": "The required element needs to be visible on the page.",
    "element-enabled": "The required element needs to be available for interaction.",
    "modal-open": "A dialog or modal window needs to be open.",
    "modal-closed": "Please close any open dialogs first.",
    "exists-reftarget": "The target element must be visible and available on the page.",
}

# Order matters: the typed datasource form must win over the bare one.
REQUIREMENT_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^has-permission:(.+)$"), "You need the '{}' permission to perform this action."),
    (re.compile(r"^has-role:(.+)$"), "You need {} role or higher to perform this action."),
    (re.compile(r"^has-datasource:type:(.+)$"), "A {} data source needs to be configured first."),
    (re.compile(r"^has-datasource:(.+)$"), "The '{}' data source needs to be configured first."),
    (re.compile(r"^has-plugin:(.+)$"), "The '{}' plugin needs to be installed and enabled."),
    (re.compile(r"^has-dashboard-named:(.+)$"), "A dashboard named '{}' needs to exist first."),
    (re.compile(r"^on-page:(.+)$"), "Navigate to the '{}' page first."),
    (re.compile(r"^has-feature:(.+)$"), "The '{}' feature needs to be enabled."),
    (re.compile(r"^in-environment:(.+)$"), "This action is only available in the {} environment."),
    (re.compile(r"^min-version:(.+)$"), "This feature requires Grafana version {} or higher."),
    (
        re.compile(r"^section-completed:(.+)$"),
        "Complete the '{}' section before continuing to this section.",
    ),
]

_QUOTED_PLUGIN = re.compile(r"['\"]([\w-]+)['\"]")


def map_requirement(requirement: str) -> str | None:
    """Mapped message for a single token, or None when nothing matches."""
    for pattern, template in REQUIREMENT_PATTERNS:
        match = pattern.match(requirement)
        if match:
            return template.format(match.group(1))

    if "plugin" in requirement:
        quoted = _QUOTED_PLUGIN.search(requirement)
        if quoted:
            return f'The "{quoted.group(1)}" plugin needs to be installed and enabled first.'
        return REQUIREMENT_MESSAGES["has-plugin"]

    if requirement in REQUIREMENT_MESSAGES:
        return REQUIREMENT_MESSAGES[requirement]

    for key, message in REQUIREMENT_MESSAGES.items():
        if key in requirement:
            return message
    return None


def friendly_message(requirement: str) -> str:
    return map_requirement(requirement) or (
        f'Requirement "{requirement}" needs to be satisfied. Check the page state and try again.'
    )


def get_requirement_explanation(
    requirements: str | None = None,
    hint: str | None = None,
    error: str | None = None,
) -> str:
    if hint and hint.strip():
        return hint.strip()

    tokens = [t.strip() for t in (requirements or "").split(",") if t.strip()]
    mapped: list[str] = []
    for token in tokens:
        message = map_requirement(token)
        if message and message not in mapped:
            mapped.append(message)
    if mapped:
        return " ".join(mapped)

    if error and error.strip():
        return error.strip()
    if tokens:
        return friendly_message(", ".join(tokens))
    return GENERIC_FALLBACK
