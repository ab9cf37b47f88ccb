from __future__ import annotations


class AuthError(RuntimeError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StorageError(AuthError):
    """The persisted key/value file cannot be read."""

    def __init__(self, message: str = "Storage file is invalid") -> None:
        super().__init__(message)


class AuthorizationDeniedError(AuthError):
    def __init__(self, error: str, description: str | None = None) -> None:
        detail = f"{error}: {description}" if description else error
        super().__init__(f"Authentication error: {detail}")
        self.error = error
        self.description = description


class MissingCallbackParametersError(AuthError):
    def __init__(self, message: str = "Missing authorization code or state") -> None:
        super().__init__(message)


class StateMismatchError(AuthError):
    def __init__(self, message: str = "State mismatch - possible CSRF attack") -> None:
        super().__init__(message)


class TokenExchangeError(AuthError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoRefreshTokenError(AuthError):
    def __init__(self, message: str = "No refresh token available") -> None:
        super().__init__(message)


class RefreshFailedError(AuthError):
    def __init__(
        self,
        message: str = "Token refresh failed - please re-authenticate",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotAuthenticatedError(AuthError):
    def __init__(self, message: str = "No access token - please log in") -> None:
        super().__init__(message)


class AuthenticationRequiredError(AuthError):
    def __init__(self, message: str = "Authentication required. Please log in.") -> None:
        super().__init__(message)


class HttpError(RuntimeError):
    """Non-2xx response from an authenticated API call."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        endpoint: str,
        raw: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.raw = raw
