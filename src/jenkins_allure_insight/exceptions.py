"""Error taxonomy for build resolution, report fetching and batch aggregation."""


class ResolutionError(ValueError):
    """A build URL could not be mapped to a job name and build number."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url}")


class MalformedUrlError(ResolutionError):
    """The build URL is not a well-formed http(s) URL."""


class UnrecognizedPatternError(ResolutionError):
    """The build URL path does not follow /job/<name>/<number>/."""


class FetchError(Exception):
    """A single read against Jenkins failed."""

    kind = "transport"

    def __init__(self, message: str, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class FetchTimeoutError(FetchError):
    """The read did not complete within the configured timeout."""

    kind = "timeout"


class HttpStatusError(FetchError):
    """Jenkins answered with a non-2xx status."""

    kind = "http_status"

    def __init__(self, message: str, url: str = "", status_code: int = 0) -> None:
        self.status_code = status_code
        super().__init__(message, url)


class AuthRejectedError(HttpStatusError):
    """Jenkins rejected the session credential."""

    kind = "auth_rejected"


class MalformedBodyError(FetchError):
    """The response body did not match the expected Allure schema."""

    kind = "malformed_body"


class AggregationError(Exception):
    """The batch could not be started at all."""
