"""LINE Messaging API publisher for News Digest Bot."""

import json
import time
import urllib.error
import urllib.request
from typing import Any

from .config import LineConfig
from .logging_config import create_execution_logger

# LINE accepts at most five message objects per request
MAX_MESSAGES_PER_REQUEST = 5


class LinePublisher:
    """Handles push, broadcast and reply delivery to LINE.

    Delivery is fire-and-forget: each call reports success as a bool and
    never raises, so one failed send does not take the request down.
    """

    def __init__(self, config: LineConfig, execution_id: str | None = None):
        """Initialize LINE publisher with configuration."""
        self.config = config
        self.logger = create_execution_logger("line_publisher", execution_id)

        self.logger.info(
            "LinePublisher initialized", retry_attempts=config.retry_attempts
        )

    def broadcast(self, messages: list[dict[str, Any]]) -> bool:
        """Send messages to every follower of the channel."""
        return self._deliver(
            self.config.broadcast_url, {"messages": messages}, "broadcast"
        )

    def push(self, to: str, messages: list[dict[str, Any]]) -> bool:
        """Send messages to one user, group or room."""
        return self._deliver(
            self.config.push_url, {"to": to, "messages": messages}, "push"
        )

    def reply(self, reply_token: str, messages: list[dict[str, Any]]) -> bool:
        """Answer a webhook event using its reply token."""
        return self._deliver(
            self.config.reply_url,
            {"replyToken": reply_token, "messages": messages},
            "reply",
        )

    def handle_rate_limit(self, retry_count: int) -> None:
        """Sleep ``backoff_factor ** retry_count`` seconds after a 429."""
        delay = self.config.backoff_factor**retry_count
        self.logger.warning(
            f"LINE rate limit hit, sleeping {delay}s before attempt {retry_count + 2}",
            retry_count=retry_count,
            delay_seconds=delay,
        )
        time.sleep(delay)

    def _deliver(self, url: str, payload: dict[str, Any], kind: str) -> bool:
        messages = payload.get("messages") or []
        if not messages:
            self.logger.error(f"Refusing to send empty {kind}", kind=kind)
            return False
        if len(messages) > MAX_MESSAGES_PER_REQUEST:
            self.logger.error(
                f"Too many messages for one {kind}: {len(messages)}",
                kind=kind,
                message_count=len(messages),
            )
            return False

        try:
            return self._post_with_retry(url, payload, kind)
        except Exception as e:
            self.logger.error(f"Unexpected error sending {kind}: {e}", kind=kind)
            return False

    def _post_with_retry(self, url: str, payload: dict[str, Any], kind: str) -> bool:
        """
        Send a request to the LINE API, retrying only on HTTP 429.

        Returns:
            True if successful, False otherwise
        """
        json_data = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        for attempt in range(self.config.retry_attempts):
            req = urllib.request.Request(
                url,
                data=json_data,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.config.channel_token}",
                    "User-Agent": "News-Digest-Bot/1.0",
                },
                method="POST",
            )
            try:
                self.logger.debug(
                    f"Sending {kind} to LINE API (attempt {attempt + 1})",
                    attempt=attempt + 1,
                    payload_bytes=len(json_data),
                )
                with urllib.request.urlopen(req, timeout=self.config.timeout) as response:
                    if 200 <= response.status < 300:
                        self.logger.info(
                            f"LINE {kind} sent successfully",
                            status_code=response.status,
                        )
                        return True
                    self.logger.error(
                        f"LINE API returned status {response.status}",
                        status_code=response.status,
                    )
                    return False

            except urllib.error.HTTPError as e:
                if e.code == 429 and attempt < self.config.retry_attempts - 1:
                    self.handle_rate_limit(attempt)
                    continue
                self.logger.error(
                    f"HTTP error sending {kind}: {e.code} - {e.reason}",
                    http_code=e.code,
                    http_reason=str(e.reason),
                )
                return False

            except urllib.error.URLError as e:
                self.logger.error(
                    f"URL error sending {kind}: {e.reason}", error_reason=str(e.reason)
                )
                return False

        return False
