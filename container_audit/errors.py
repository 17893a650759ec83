"""Error taxonomy for the audit engine.

Everything except NoTargetsResolved is local to one check result: the
evaluator turns it into a failed check and moves on.
"""


class AuditError(Exception):
    """Base class for audit errors."""


class TargetNotFound(AuditError):
    """Container, image or file does not exist."""

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class InspectionFailed(AuditError):
    """The container engine (or another inspector) returned an error."""


class ParseError(AuditError):
    """Text did not match the narrow patterns the scanner expects."""


class TransportFailure(AuditError):
    """An HTTP request did not produce a response (includes timeouts)."""


class ToolUnavailable(AuditError):
    """An external binary (docker, trivy) is not installed."""

    def __init__(self, tool: str, detail: str = ""):
        msg = f"{tool} is not available"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.tool = tool


class NoTargetsResolved(AuditError):
    """A category found nothing to audit. Aborts that category."""

    def __init__(self, category: str, hint: str = ""):
        msg = f"No targets resolved for category '{category}'"
        if hint:
            msg += f" ({hint})"
        super().__init__(msg)
        self.category = category
