"""Data models for News Digest Bot."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlparse


def is_absolute_url(value: str) -> bool:
    """Return True for http(s) URLs that carry a host."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True)
class FeedItem:
    """One story from the daily feed."""

    rank: int
    title: str
    link: str
    published: datetime

    def __post_init__(self):
        if isinstance(self.rank, bool) or not isinstance(self.rank, int) or self.rank < 1:
            raise ValueError(f"rank must be a positive integer, got {self.rank!r}")
        if not is_absolute_url(self.link):
            raise ValueError(f"link must be an absolute http(s) URL, got {self.link!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "title": self.title,
            "link": self.link,
            "published": self.published.isoformat(),
        }


@dataclass(frozen=True)
class SummarizedItem:
    """A FeedItem paired with its summary or failure reason."""

    item: FeedItem
    summary: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AggregateSummary:
    """Summary of a whole batch of stories, sectioned by blank lines."""

    generated_at: datetime
    body: str

    @property
    def sections(self) -> list[str]:
        """Non-empty paragraphs of the body, in order."""
        paragraphs = []
        current: list[str] = []
        for line in self.body.splitlines():
            if line.strip():
                current.append(line.strip())
            elif current:
                paragraphs.append("\n".join(current))
                current = []
        if current:
            paragraphs.append("\n".join(current))
        return paragraphs


@dataclass(frozen=True)
class LineEvent:
    """One event from a LINE webhook payload."""

    type: str
    reply_token: str | None = None
    user_id: str | None = None
    message_type: str | None = None
    text: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineEvent":
        source = data.get("source") or {}
        message = data.get("message") or {}
        return cls(
            type=data.get("type", ""),
            reply_token=data.get("replyToken"),
            user_id=source.get("userId"),
            message_type=message.get("type"),
            text=message.get("text"),
        )

    @property
    def is_text_message(self) -> bool:
        return self.type == "message" and self.message_type == "text" and bool(self.text)


@dataclass(frozen=True)
class WebhookEvent:
    """Raw webhook request: body and signature travel together until verified."""

    raw_body: bytes
    signature: str
    events: tuple[LineEvent, ...] = field(default_factory=tuple)

    def parse(self) -> "WebhookEvent":
        """Return a copy with `events` parsed from the raw body.

        Only call this after the signature has been verified.

        Raises:
            ValueError: If the body is not a JSON object with an events list
        """
        payload = json.loads(self.raw_body.decode("utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload.get("events"), list):
            raise ValueError("Webhook body must be an object with an events list")
        events = tuple(
            LineEvent.from_dict(event)
            for event in payload["events"]
            if isinstance(event, dict)
        )
        return WebhookEvent(raw_body=self.raw_body, signature=self.signature, events=events)
