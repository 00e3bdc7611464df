"""Stateless dispatch of inbound chat messages."""

import re
from dataclasses import dataclass

from .errors import ConversationError, FetchError, SummaryError
from .kagi import is_valid_url
from .logging_config import create_execution_logger

APOLOGY_TEXT = "Sorry, I couldn't process that right now. Please try again later."
MAX_DIGEST_STORIES = 5
# Summaries are produced in these languages and are never translated into them
DEFAULT_SOURCE_LANGUAGES = frozenset({"en", "zh-tw"})
# Commands whose replies are translated into the language of the message
LOCALIZED_ACTIONS = frozenset({"summarize_url", "digest"})

_TRANSLATE_RE = re.compile(
    r"^translate:\s*(?P<code>[a-z]{2,3}(?:[-_][a-z]{2,4})?)\s+(?P<text>\S.*)$",
    re.IGNORECASE | re.DOTALL,
)
_DETECT_RE = re.compile(r"^(?:detect|lang):\s*(?P<text>\S.*)$", re.IGNORECASE | re.DOTALL)
_DIGEST_RE = re.compile(r"^digest:\s*(?P<indexes>.*)$", re.IGNORECASE | re.DOTALL)
_LATEST_WORDS = frozenset({"latest", "/latest"})


@dataclass(frozen=True)
class Command:
    """Result of classifying one message."""

    action: str
    text: str = ""
    language_code: str = ""
    indexes: tuple[int, ...] = ()


class ConversationDispatcher:
    """Classify → act → respond, with no memory between calls."""

    def __init__(
        self,
        summarizer,
        url_summarizer=None,
        feed_fetcher=None,
        execution_id: str | None = None,
        source_languages: frozenset[str] = DEFAULT_SOURCE_LANGUAGES,
    ):
        self.summarizer = summarizer
        self.url_summarizer = url_summarizer
        self.feed_fetcher = feed_fetcher
        self.source_languages = source_languages
        self.logger = create_execution_logger("conversation", execution_id)

    def handle(self, user_text: str) -> str:
        """Return the reply for one inbound message.

        Downstream model, feed and URL-summary failures are answered with a
        fixed apology; their details only go to the log.

        Raises:
            ConversationError: Empty text or a malformed command
        """
        command = self.classify(user_text)
        self.logger.info("Classified message", action=command.action)

        try:
            reply = self._act(command)
            if command.action in LOCALIZED_ACTIONS:
                reply = self._localize(reply, user_text)
        except (SummaryError, FetchError) as e:
            self.logger.warning(
                f"Downstream failure while handling {command.action}",
                action=command.action,
                error_type=type(e).__name__,
            )
            return APOLOGY_TEXT

        return reply.strip() or APOLOGY_TEXT

    def classify(self, user_text: str) -> Command:
        """Map raw text onto one of the supported commands."""
        text = (user_text or "").strip()
        if not text:
            raise ConversationError("Message is empty")

        lowered = text.lower()
        if lowered.startswith("translate:"):
            match = _TRANSLATE_RE.match(text)
            if not match:
                raise ConversationError(
                    "Usage: translate:<language code> <text>, e.g. translate:fr Hello"
                )
            return Command(
                action="translate",
                text=match.group("text").strip(),
                language_code=match.group("code").lower().replace("_", "-"),
            )

        match = _DETECT_RE.match(text)
        if match:
            return Command(action="detect", text=match.group("text").strip())

        match = _DIGEST_RE.match(text)
        if match:
            return Command(action="digest", indexes=self._parse_indexes(match.group("indexes")))

        if lowered in _LATEST_WORDS:
            return Command(action="latest")

        if len(text.split()) == 1 and is_valid_url(text):
            return Command(action="summarize_url", text=text)

        return Command(action="ask", text=text)

    def _act(self, command: Command) -> str:
        if command.action == "translate":
            return self.summarizer.translate(command.text, command.language_code)
        if command.action == "detect":
            return self.summarizer.detect_language(command.text)
        if command.action == "summarize_url":
            if self.url_summarizer is None:
                raise ConversationError("URL summaries are not available")
            return self.url_summarizer.summarize_url(command.text)
        if command.action == "latest":
            item = self._require_feed().fetch()[0]
            return f"Latest story: {item.title}\n{item.link}"
        if command.action == "digest":
            items = self._require_feed().fetch()
            selected = [items[i - 1] for i in command.indexes if i <= len(items)]
            if not selected:
                raise ConversationError(f"Pick story numbers between 1 and {len(items)}")
            return self.summarizer.summarize_all(selected).body
        return self.summarizer.ask(command.text)

    def _localize(self, reply: str, user_text: str) -> str:
        """Translate a summary into the language the user wrote in.

        An undetectable language leaves the reply as it is; a failed
        translation propagates like any other model failure.
        """
        if not reply.strip():
            return reply
        try:
            language_code = self.summarizer.detect_language(user_text)
        except SummaryError as e:
            self.logger.warning(
                "Language detection failed, replying untranslated",
                error_type=type(e).__name__,
            )
            return reply

        if language_code in self.source_languages:
            return reply
        self.logger.info("Translating reply", language_code=language_code)
        return self.summarizer.translate(reply, language_code)

    def _require_feed(self):
        if self.feed_fetcher is None:
            raise ConversationError("Stories are not available")
        return self.feed_fetcher

    def _parse_indexes(self, raw: str) -> tuple[int, ...]:
        tokens = [token for token in re.split(r"[\s,]+", raw) if token]
        if not tokens:
            raise ConversationError("Usage: digest:<numbers>, e.g. digest:1,3,5")

        indexes = []
        for token in tokens:
            if not (token.isascii() and token.isdigit()) or int(token) < 1:
                raise ConversationError(f"Not a story number: {token}")
            if int(token) not in indexes:
                indexes.append(int(token))

        if len(indexes) > MAX_DIGEST_STORIES:
            raise ConversationError(f"Pick at most {MAX_DIGEST_STORIES} stories")
        return tuple(indexes)
