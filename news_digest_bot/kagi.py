"""Kagi Universal Summarizer client, used for summarize-this-URL requests."""

import requests

from .config import KagiConfig
from .errors import SummaryTimeoutError, SummaryUpstreamError
from .logging_config import create_execution_logger
from .models import is_absolute_url


def is_valid_url(url: str) -> bool:
    """Only http(s) URLs with a host are sent to the summarizer."""
    return is_absolute_url(url)


class KagiSummarizer:
    """Summarizes the content behind a URL."""

    def __init__(
        self,
        config: KagiConfig,
        session: requests.Session | None = None,
        execution_id: str | None = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.logger = create_execution_logger("kagi", execution_id)

    def summarize_url(self, url: str) -> str:
        """Return Kagi's summary of the page at url.

        Raises:
            ValueError: If url is not an absolute http(s) URL
            SummaryTimeoutError: The service did not answer in time
            SummaryUpstreamError: The service failed or returned no summary
        """
        if not is_valid_url(url):
            raise ValueError(f"Invalid URL provided: {url!r}")
        if not self.config.api_key:
            raise SummaryUpstreamError("Kagi API key is not configured")

        self.logger.info("Requesting URL summary", url=url, engine=self.config.engine)
        try:
            response = self.session.post(
                self.config.summarize_url,
                json={
                    "url": url,
                    "engine": self.config.engine,
                    "target_language": self.config.target_language,
                },
                headers={
                    "Authorization": f"Bot {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            self.logger.warning("Kagi request timed out", url=url)
            raise SummaryTimeoutError("Kagi timed out") from e
        except requests.RequestException as e:
            self.logger.error(f"Kagi request failed: {type(e).__name__}", url=url)
            raise SummaryUpstreamError(f"Kagi request failed: {type(e).__name__}") from e

        if not response.ok:
            self.logger.error(
                f"Kagi API error: HTTP {response.status_code}",
                status_code=response.status_code,
            )
            raise SummaryUpstreamError(f"Kagi API error: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SummaryUpstreamError("Kagi returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise SummaryUpstreamError("Kagi returned an unexpected payload")
        if payload.get("error"):
            # error is a list of {code, msg} objects in v0
            raise SummaryUpstreamError(f"Kagi API error: {payload['error']}")

        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SummaryUpstreamError("Unexpected response shape")
        summary = data.get("output") or data.get("summary") or ""
        if not isinstance(summary, str):
            raise SummaryUpstreamError("Unexpected response shape")
        summary = summary.strip()
        if not summary:
            raise SummaryUpstreamError("No summary data returned from Kagi")

        self.logger.info("URL summary received", url=url, response_length=len(summary))
        return summary
