"""Error taxonomy for emote catalog fetches."""


def is_retryable_status(status: int) -> bool:
    """Check if an HTTP status code is worth retrying.

    Retry on server errors (5xx) and rate limiting (429).
    """
    return status >= 500 or status == 429


class EmoteError(Exception):
    """Base class for emote provider errors."""

    retryable: bool = False

    @property
    def kind(self) -> str:
        return type(self).__name__


class NetworkError(EmoteError):
    """HTTP failure. ``status`` is 0 when no response was received."""

    def __init__(self, url: str, status: int = 0, detail: str = ""):
        self.url = url
        self.status = status
        self.detail = detail
        super().__init__(f"HTTP {status} from {url}: {detail}" if status else f"{url}: {detail}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        # status 0 is a connection failure
        return self.status == 0 or is_retryable_status(self.status)


class FetchTimeoutError(EmoteError):
    """An attempt (or the whole preload) ran past its deadline."""

    retryable = True

    def __init__(self, attempt: int, elapsed_ms: int, url: str = ""):
        self.attempt = attempt
        self.elapsed_ms = elapsed_ms
        self.url = url
        where = f" for {url}" if url else ""
        super().__init__(f"Attempt {attempt} timed out after {elapsed_ms}ms{where}")


class ParseError(EmoteError):
    """Payload did not match the expected schema."""

    def __init__(self, url: str, detail: str):
        self.url = url
        self.detail = detail
        super().__init__(f"Malformed payload from {url}: {detail}")


class ProviderDisabled(EmoteError):
    """Provider is turned off in settings. A skip, not a failure."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider {name} is disabled")
