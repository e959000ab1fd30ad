"""Exception hierarchy for the request pipeline."""


class FetchCoreError(Exception):
    """Base class for all fetchcore errors."""


class MalformedRequestError(FetchCoreError, TypeError):
    """An intercepted method did not return a request with method and url."""

    def __init__(self, method_name: str, result: object):
        self.method_name = method_name
        self.result = result
        super().__init__(
            f"{method_name} must return an HTTPRequest object with 'method' and "
            f"'url' properties, got {type(result).__name__}"
        )


class ResponseNotReadyError(FetchCoreError):
    """Response data was accessed before the request completed."""

    def __init__(self):
        super().__init__("No response available.")


class TransportError(FetchCoreError):
    """Network-level failure while performing a request (retryable)."""

    def __init__(self, method: str, url: str, cause: Exception):
        self.method = method
        self.url = url
        super().__init__(f"HTTP request failed: {method} {url}: {cause}")


class HTTPStatusError(FetchCoreError):
    """The server answered with a non-success status (retryable)."""

    def __init__(self, method: str, url: str, status: int, reason: str = ""):
        self.method = method
        self.url = url
        self.status = status
        super().__init__(f"HTTP request not OK: {status} {reason}".rstrip())


class ResponseValidationError(FetchCoreError):
    """The response body does not match its declared schema (terminal)."""

    def __init__(self, method_name: str, errors: list[str]):
        self.method_name = method_name
        self.errors = errors
        error_str = "\n".join(f"  {e}" for e in errors) or "  Unknown validation error"
        super().__init__(
            f"Response from {method_name} does not match the expected format. "
            f"Errors: \n{error_str}"
        )


class InjectionError(FetchCoreError):
    """One or more injected handlers raised during a broadcast."""

    def __init__(self, event_name: str | None, errors: list[BaseException]):
        self.event_name = event_name
        self.errors = errors
        first = errors[0] if errors else None
        super().__init__(
            f"{len(errors)} injection handler(s) failed for event "
            f"{event_name!r}: {first!r}"
        )
