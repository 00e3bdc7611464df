"""LINE Flex message composition for News Digest Bot.

Everything here is pure: the same input always yields the same message dict.
"""

import unicodedata
from collections.abc import Sequence
from typing import Any, TypeVar

from .config import ComposerConfig
from .errors import ComposeError, TooManyItemsError
from .models import AggregateSummary, SummarizedItem

T = TypeVar("T")

_ZERO_WIDTH_JOINER = "\u200d"
_TEXT_COLOR = "#333333"
_MUTED_COLOR = "#999999"


def _extends_previous(char: str) -> bool:
    """True for code points that render as part of the preceding character."""
    if unicodedata.combining(char):
        return True
    if char == _ZERO_WIDTH_JOINER or "\ufe00" <= char <= "\ufe0f":
        return True
    # Emoji skin tone modifiers
    if "\U0001f3fb" <= char <= "\U0001f3ff":
        return True
    return unicodedata.category(char) in ("Mn", "Me")


def truncate_text(text: str | None, limit: int, marker: str = "…") -> str:
    """Shorten text to at most `limit` code points.

    The cut never leaves a combining mark, variation selector or joined
    emoji half behind, and the marker is appended only when something was
    actually removed. Strings already within the limit come back unchanged.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    if not text:
        return ""
    if len(text) <= limit:
        return text

    if len(marker) >= limit:
        marker = ""
    cut = limit - len(marker)
    while cut > 0 and (
        _extends_previous(text[cut])
        or text[cut - 1] == _ZERO_WIDTH_JOINER
        or text[cut - 1].isspace()
    ):
        cut -= 1

    return text[:cut] + marker


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive lists of at most `size`."""
    if size < 1:
        raise ValueError("size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class FlexComposer:
    """Builds carousel, bubble and text messages within LINE's limits."""

    def __init__(self, config: ComposerConfig | None = None):
        self.config = config or ComposerConfig()

    def truncate(self, text: str | None, limit: int) -> str:
        return truncate_text(text, limit, self.config.truncation_marker)

    def build_carousel(self, items: Sequence[SummarizedItem]) -> dict[str, Any]:
        """One card per item, in the given order.

        Raises:
            ComposeError: If items is empty
            TooManyItemsError: If items exceed the per-carousel card limit
        """
        if not items:
            raise ComposeError("A carousel needs at least one item")
        if len(items) > self.config.max_cards:
            raise TooManyItemsError(len(items), self.config.max_cards)

        cards = [self._build_card(item) for item in items]
        first, last = items[0].item.rank, items[-1].item.rank
        alt_text = f"{self.config.header_title}: stories #{first}-#{last}"
        return {
            "type": "flex",
            "altText": self.truncate(alt_text, self.config.alt_text_limit),
            "contents": {"type": "carousel", "contents": cards},
        }

    def build_bubble(self, summary: AggregateSummary) -> dict[str, Any]:
        """Single card with a dated header and one section per paragraph."""
        date_label = summary.generated_at.strftime("%Y-%m-%d")
        sections = summary.sections

        body_contents: list[dict[str, Any]] = []
        for index, section in enumerate(sections):
            if index:
                body_contents.append({"type": "separator", "margin": "lg"})
            body_contents.append(self._build_section(section))
        if not body_contents:
            body_contents.append(self._text("No summary available", color=_MUTED_COLOR))

        bubble = {
            "type": "bubble",
            "size": "giga",
            "header": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    self._text(
                        self.config.header_title,
                        weight="bold",
                        size="lg",
                        color=self.config.accent_color,
                    ),
                    self._text(date_label, size="xs", color=_MUTED_COLOR),
                ],
            },
            "body": {
                "type": "box",
                "layout": "vertical",
                "spacing": "md",
                "contents": body_contents,
            },
        }
        alt_text = f"{self.config.header_title} {date_label}"
        if sections:
            alt_text = f"{alt_text}: {sections[0]}"
        return {
            "type": "flex",
            "altText": self.truncate(alt_text, self.config.alt_text_limit),
            "contents": bubble,
        }

    def build_text_message(self, text: str) -> dict[str, Any]:
        """Plain text message, clipped to the platform limit."""
        return {
            "type": "text",
            "text": self.truncate(text, self.config.text_limit) or "…",
        }

    def _build_card(self, summarized: SummarizedItem) -> dict[str, Any]:
        item = summarized.item
        summary_color = _TEXT_COLOR if summarized.ok else _MUTED_COLOR
        return {
            "type": "bubble",
            "size": "kilo",
            "header": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    self._text(
                        f"#{item.rank}",
                        weight="bold",
                        size="sm",
                        color=self.config.accent_color,
                    )
                ],
            },
            "body": {
                "type": "box",
                "layout": "vertical",
                "spacing": "sm",
                "contents": [
                    self._text(
                        self.truncate(item.title, self.config.title_limit),
                        weight="bold",
                        size="md",
                    ),
                    self._text(
                        self.truncate(summarized.summary, self.config.summary_limit),
                        size="sm",
                        color=summary_color,
                    ),
                ],
            },
            "footer": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    {
                        "type": "button",
                        "style": "link",
                        "height": "sm",
                        "action": {"type": "uri", "label": "Read more", "uri": item.link},
                    }
                ],
            },
        }

    def _build_section(self, section: str) -> dict[str, Any]:
        lines = section.split("\n")
        contents = []
        if len(lines) > 1:
            contents.append(self._text(lines[0], weight="bold", size="sm"))
            lines = lines[1:]
        contents.append(
            self._text(
                self.truncate(" ".join(lines), self.config.section_limit),
                size="sm",
                color=_TEXT_COLOR,
            )
        )
        return {"type": "box", "layout": "vertical", "spacing": "xs", "contents": contents}

    def _text(self, text: str, **style: str) -> dict[str, Any]:
        # LINE rejects empty text components
        return {"type": "text", "text": text or "-", "wrap": True, **style}
