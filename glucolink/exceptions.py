"""
Exceptions raised by the fetch layer.

Only InvalidCredentialsError is meant to reach end users directly; the fetcher
absorbs everything else while it still has usable data.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidCredentialsError(ServiceError):
    """Login rejected the stored username/password."""

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message, status_code=401)


class NoCredentialsError(InvalidCredentialsError):
    """No credentials configured."""

    def __init__(self):
        super().__init__(
            "No credentials found. Please enter your LibreView credentials"
        )


class TokenExpiredError(ServiceError):
    """A bearer-authenticated endpoint rejected the current token."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"Token rejected by {endpoint}", status_code=401)


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(
        self,
        endpoint: str,
        status_code: int = 429,
        retry_after: float | None = None,
    ):
        self.endpoint = endpoint
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for '{endpoint}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, status_code=status_code)


class MalformedResponseError(ServiceError):
    """Upstream answered but the payload lacks the expected fields."""

    pass


class EmptyDatasetError(ServiceError):
    """Graph response contained no usable readings."""

    def __init__(self, received: int = 0):
        self.received = received
        super().__init__(
            f"No valid glucose readings in response ({received} received)"
        )


class NoConnectionError(ServiceError):
    """The account follows no LibreLinkUp connection."""

    def __init__(self):
        super().__init__(
            "No LibreLinkUp connection found. Add the account that has the "
            "Libre sensor in the LibreLinkUp app, wait for the invitation to "
            "be accepted, then try again"
        )


class NetworkError(ServiceError):
    """Transport-level failure (connection refused, DNS, reset)."""

    pass


class RequestTimeoutError(NetworkError):
    """Request timed out."""

    def __init__(self, endpoint: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"Request to '{endpoint}' timed out after {timeout}s")


class ServiceUnavailableError(NetworkError):
    """Service is temporarily unavailable."""

    pass


class CacheError(ServiceError):
    """Cache operation failed."""

    pass
