"""Custom exceptions for the process portal.

Every user-facing error carries a German message; the HTTP layer
returns it verbatim as ``detail``.
"""


class PortalError(Exception):
    """Base exception for the process portal."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: User-facing (German) message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(PortalError):
    """Entity does not exist or was deleted."""

    def __init__(self, message: str = "Nicht gefunden"):
        super().__init__(message, 404)


class UnauthorizedError(PortalError):
    """Missing or invalid identity."""

    def __init__(self, message: str = "Nicht angemeldet"):
        super().__init__(message, 401)


class PermissionDeniedError(PortalError):
    """The access gate denied the operation."""

    def __init__(self, message: str = "Keine Berechtigung"):
        super().__init__(message, 403)


class ValidationError(PortalError):
    """Invalid input, e.g. a malformed permission rule."""

    def __init__(self, message: str = "Ungültige Eingabe"):
        super().__init__(message, 422)


class PreconditionFailedError(PortalError):
    """A status invariant does not allow the requested transition."""

    def __init__(self, message: str):
        super().__init__(message, 409)


class DependencyUnsatisfiedError(PreconditionFailedError):
    """Completion is blocked by incomplete dependencies.

    Attributes:
        blocking: Names of the dependency processes that are not completed
    """

    def __init__(self, blocking: list[str]):
        self.blocking = list(blocking)
        super().__init__(
            "Folgende Abhängigkeiten sind nicht abgeschlossen: " + ", ".join(self.blocking)
        )


class ConfigurationMissingError(PortalError):
    """Required external configuration is absent. Never retried."""

    def __init__(self, message: str = "N8n ist nicht konfiguriert"):
        super().__init__(message, 500)


class WebhookDispatchError(PortalError):
    """At least one n8n webhook call failed.

    Attributes:
        failed_ids: n8n workflow ids whose call failed
    """

    def __init__(self, failed_ids: list[str], message: str = "Fehler beim Auslösen der Webhooks"):
        self.failed_ids = list(failed_ids)
        super().__init__(message, 502)


class RuleSyntaxError(ValueError):
    """A stored permission rule is not a valid rule tree.

    Raised by the rule engine only; access checks turn it into a deny.
    """
