"""
Error taxonomy shared by the API and the core modules.

Every error carries a stable ``category`` so callers can tell "fix your
input" apart from "retry the whole request".
"""
from typing import List, Optional


class MarketplaceError(Exception):
    category = "server_error"
    status_code = 500
    retryable = True

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        body = {
            "detail": self.message,
            "category": self.category,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailure(MarketplaceError):
    category = "validation_failed"
    status_code = 400
    retryable = False


class NotFound(MarketplaceError):
    category = "not_found"
    status_code = 404
    retryable = False


class DuplicateKey(MarketplaceError):
    category = "duplicate_key"
    status_code = 409
    retryable = True


class TransientStoreFailure(MarketplaceError):
    category = "server_error"
    status_code = 500
    retryable = True


def describe_errors(errors) -> List[str]:
    """Flatten pydantic error dicts into ``"field: message"`` strings."""
    out = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out
