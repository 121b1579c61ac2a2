"""Error taxonomy shared by the REST layer, the gateway and the poller.

Every error carries a machine readable ``code`` and the HTTP status used when
it crosses the REST boundary. Over the push channel only ``code`` and the
message are sent, to the offending connection alone.
"""
from typing import Any, Dict, Optional


class HearthError(Exception):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(HearthError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class AuthError(HearthError):
    code = "invalid_session"
    status_code = 401
    default_message = "Your session has expired or is invalid"


class CredentialRejectedError(AuthError):
    """An upstream service refused the bridge key or account token."""
    code = "invalid_credential"
    default_message = "The service rejected the credential"


class PairingRequiredError(HearthError):
    code = "pairing_required"
    status_code = 428
    pairing_required = True

    def __init__(self, bridge_id: str, message: Optional[str] = None):
        self.bridge_id = bridge_id
        super().__init__(message or f"Bridge {bridge_id} has no stored credential; pair it first")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["pairingRequired"] = True
        out["bridgeId"] = self.bridge_id
        return out


class UpstreamError(HearthError):
    code = "upstream_error"
    status_code = 502
    default_message = "Unable to communicate with the upstream service"


class UpstreamTimeoutError(UpstreamError):
    code = "upstream_timeout"
    status_code = 504
    default_message = "The upstream service did not respond in time"


class UpstreamUnreachableError(UpstreamError):
    code = "upstream_unreachable"
    status_code = 502
    default_message = "The upstream service is unreachable"


class RateLimitError(HearthError):
    code = "rate_limit_exceeded"
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message)

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class PersistenceError(HearthError):
    code = "persistence_error"
    status_code = 500
    default_message = "Failed to read or write persisted state"
