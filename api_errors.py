"""Exception types raised by the API client."""

_GENERIC_MESSAGES = {
    401: "Unauthorized, please log in again",
    403: "You do not have permission to perform this action",
    404: "The requested resource does not exist",
    419: "Session security token expired",
    422: "Validation failed",
}


class ApiError(Exception):
    """Base class for everything the client raises."""


class TransportError(ApiError):
    """Server unreachable, timed out, or returned an unreadable body."""


class HTTPStatusError(ApiError):
    def __init__(self, status: int, payload=None, method: str = "", path: str = ""):
        self.status = status
        self.payload = payload
        self.method = method
        self.path = path
        super().__init__(f"{method} {path} → {status}: {self.message}")

    @property
    def message(self) -> str:
        """Human-readable message taken from the response body when possible."""
        if isinstance(self.payload, dict):
            errors = self.payload.get("errors")
            if self.status == 422 and isinstance(errors, dict) and errors:
                first = next(iter(errors.values()))
                if isinstance(first, list) and first:
                    return str(first[0])
                if isinstance(first, str):
                    return first
            if self.payload.get("message"):
                return str(self.payload["message"])
        return _GENERIC_MESSAGES.get(self.status, "Request failed")


class AuthExpiredError(HTTPStatusError):
    """401 — access token missing, invalid or expired."""


class AntiForgeryExpiredError(HTTPStatusError):
    """419 — anti-forgery (CSRF) token expired."""


class ValidationError(HTTPStatusError):
    """422 — the server rejected the submitted data."""


class RefreshError(ApiError):
    """Session could not be renewed; credentials have been cleared."""


class MissingRefreshTokenError(RefreshError):
    pass


_STATUS_ERRORS = {
    401: AuthExpiredError,
    419: AntiForgeryExpiredError,
    422: ValidationError,
}


def raise_for_status(response, method: str, path: str) -> None:
    if 200 <= response.status < 300:
        return
    cls = _STATUS_ERRORS.get(response.status, HTTPStatusError)
    raise cls(response.status, response.data, method, path)
