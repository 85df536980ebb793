# errors.py
# Exception taxonomy for the guide engine.
#
# Requirement checks never raise these to callers; the evaluator folds them
# into CheckResult. Executor and fixer errors propagate up to the step
# boundary, where the section runner turns them into skip/halt decisions.


class GuideEngineError(Exception):
    """Base class for every error raised by the engine."""


class RequirementFailure(GuideEngineError):
    """Raised by a checker when its predicate is false. Recoverable."""

    def __init__(self, message: str, fix_type=None, target_href: str | None = None):
        super().__init__(message)
        self.fix_type = fix_type
        self.target_href = target_href


class RequirementTimeout(RequirementFailure):
    """Raised when a single requirement check exceeds its time bound."""


class SelectorAmbiguity(GuideEngineError):
    """Raised when a selector resolves to zero or several elements where exactly one is needed."""

    def __init__(self, selector: str, count: int):
        self.selector = selector
        self.count = count
        if count == 0:
            detail = f"No element matches selector: {selector}"
        else:
            detail = f"Selector '{selector}' matched {count} elements, expected exactly one"
        super().__init__(detail)


class ActionExecutionFailure(GuideEngineError):
    """Raised when a click, fill, hover or navigation against the page throws."""


class FixAttemptFailure(GuideEngineError):
    """Raised when an automated requirement fix throws or has nothing to do."""


class GuideParseError(GuideEngineError):
    """Raised when a guide document cannot be parsed or validated."""
