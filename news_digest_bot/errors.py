"""Exception hierarchy for News Digest Bot."""


class NewsDigestError(Exception):
    """Base class for all bot errors."""


class ConfigError(NewsDigestError):
    """Configuration or secret is missing or invalid."""


class AuthError(NewsDigestError):
    """Webhook request failed signature verification."""


class FetchError(NewsDigestError):
    """Feed could not be turned into a list of items."""

    kind = "fetch"


class FeedMalformedError(FetchError):
    """Feed document could not be parsed."""

    kind = "malformed"


class FeedEmptyError(FetchError):
    """Feed parsed but contained no usable items."""

    kind = "empty"


class FeedUnavailableError(FetchError):
    """Feed could not be downloaded, retries included."""

    kind = "unavailable"


class SummaryError(NewsDigestError):
    """Summarization backend call failed."""

    kind = "upstream"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind)
        self.detail = detail


class SummaryUpstreamError(SummaryError):
    """Provider returned an error or an unusable response."""

    kind = "upstream"


class SummaryTimeoutError(SummaryError):
    """Provider did not answer within the configured timeout."""

    kind = "timeout"


class ComposeError(NewsDigestError):
    """Message could not be composed from the given input."""


class TooManyItemsError(ComposeError):
    """More items than the platform allows in one carousel."""

    def __init__(self, count: int, limit: int):
        super().__init__(f"{count} items exceed the carousel limit of {limit}")
        self.count = count
        self.limit = limit


class ConversationError(NewsDigestError):
    """Inbound conversation text could not be handled."""


class BatchFailedError(NewsDigestError):
    """Too many items failed in one summarization batch."""

    def __init__(self, failed: int, total: int):
        super().__init__(f"{failed} of {total} summaries failed")
        self.failed = failed
        self.total = total


class RetryExhaustedError(NewsDigestError):
    """All retry attempts failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
