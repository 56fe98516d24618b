"""
Error kinds surfaced by the ledger core.

Every error carries a short machine-readable ``kind`` and the HTTP status the
API layer renders it with. Handlers raise these; ``api.server`` translates
them into JSON responses.
"""


class LedgerError(Exception):
    """Base class for all domain errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class Unauthenticated(LedgerError):
    """No identifiable principal on the request."""

    kind = "unauthenticated"
    status_code = 401


class Forbidden(LedgerError):
    kind = "forbidden"
    status_code = 403


class NotFound(LedgerError):
    """Absent, or not visible to the requesting principal."""

    kind = "not_found"
    status_code = 404


class Conflict(LedgerError):
    kind = "conflict"
    status_code = 409


class InvalidInput(LedgerError):
    kind = "invalid_input"
    status_code = 400


class UnknownCategory(InvalidInput):
    """A split names a category that has no mirrored remote id."""

    kind = "unknown_category"
    status_code = 422

    def __init__(self, category_name: str):
        super().__init__(f"No remote category mapped for '{category_name}'")
        self.category_name = category_name


class NotConfigured(LedgerError):
    """Remote operation attempted without complete credentials."""

    kind = "not_configured"
    status_code = 400


class UpstreamError(LedgerError):
    """Non-2xx (or no) response from the remote budgeting service."""

    kind = "upstream_error"
    status_code = 502

    def __init__(self, status: int | None, message: str = ""):
        super().__init__(message or f"Upstream responded with status {status}")
        self.status = status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


class Internal(LedgerError):
    kind = "internal"
    status_code = 500


class InvalidCiphertext(Internal):
    """Ciphertext failed authentication or could not be decoded."""


class VaultNotInitialized(Internal):
    """The credential vault was used before a key was supplied."""
