"""Lambda entry point for News Digest Bot.

Serves API Gateway proxy events (payload v1 and v2) and scheduled
EventBridge events. Configuration is loaded once per container; components
are built per invocation so every log line carries the invocation's
execution ID.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import cache, cached_property
from typing import Any

from .config import AppConfig, Config
from .conversation import APOLOGY_TEXT, ConversationDispatcher
from .errors import (
    AuthError,
    BatchFailedError,
    ConversationError,
    FeedEmptyError,
    FeedMalformedError,
    FeedUnavailableError,
    NewsDigestError,
    SummaryError,
    SummaryTimeoutError,
)
from .flex import FlexComposer, chunk
from .kagi import KagiSummarizer
from .line import MAX_MESSAGES_PER_REQUEST, LinePublisher
from .logging_config import create_execution_logger, setup_structured_logging
from .metrics import send_cloudwatch_metrics
from .models import WebhookEvent
from .orchestrator import SummarizationOrchestrator
from .rss import FeedFetcher
from .signature import verify_signature
from .summarize import Summarizer

# Setup structured logging
setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))

SIGNATURE_HEADER = "x-line-signature"


@dataclass(frozen=True)
class HttpRequest:
    """The parts of an API Gateway proxy event the routes need."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes


@cache
def get_app_config() -> AppConfig:
    """Load configuration and secrets once per Lambda container."""
    return Config().load()


class Application:
    """Components for one invocation, built on first use."""

    def __init__(self, config: AppConfig, execution_id: str):
        self.config = config
        self.execution_id = execution_id

    @cached_property
    def feed_fetcher(self) -> FeedFetcher:
        return FeedFetcher(
            self.config.feed.url,
            retry_policy=self.config.feed.retry_policy(),
            timeout=self.config.feed.timeout,
            execution_id=self.execution_id,
        )

    @cached_property
    def summarizer(self) -> Summarizer:
        return Summarizer(
            self.config.bedrock, self.config.prompts, execution_id=self.execution_id
        )

    @cached_property
    def orchestrator(self) -> SummarizationOrchestrator:
        return SummarizationOrchestrator(
            self.summarizer, self.config.orchestrator, execution_id=self.execution_id
        )

    @cached_property
    def composer(self) -> FlexComposer:
        return FlexComposer(self.config.composer)

    @cached_property
    def publisher(self) -> LinePublisher:
        return LinePublisher(self.config.line, execution_id=self.execution_id)

    @cached_property
    def dispatcher(self) -> ConversationDispatcher:
        url_summarizer = None
        if self.config.kagi.api_key:
            url_summarizer = KagiSummarizer(
                self.config.kagi, execution_id=self.execution_id
            )
        return ConversationDispatcher(
            self.summarizer,
            url_summarizer=url_summarizer,
            feed_fetcher=self.feed_fetcher,
            execution_id=self.execution_id,
        )

    def record_metrics(self, metrics: dict[str, Any]) -> None:
        create_execution_logger("main", self.execution_id).log_metrics(metrics)
        if self.config.metrics_enabled:
            send_cloudwatch_metrics(
                metrics, self.config.aws_region, self.execution_id
            )


def json_response(status_code: int, body: Any) -> dict[str, Any]:
    """Build an API Gateway proxy response with a JSON body."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json; charset=utf-8"},
        "body": json.dumps(body, ensure_ascii=False),
    }


# (error class, status, body message); first match wins, so subclasses come first.
# ConversationError messages are written for the user and are passed through.
ERROR_RESPONSES: tuple[tuple[type[Exception], int, str | None], ...] = (
    (AuthError, 401, "Invalid signature"),
    (ConversationError, 400, None),
    (FeedUnavailableError, 504, "Feed unavailable"),
    (FeedMalformedError, 502, "Feed could not be parsed"),
    (FeedEmptyError, 502, "Feed has no stories"),
    (SummaryTimeoutError, 502, "Summarizer timed out"),
    (SummaryError, 502, "Summarizer unavailable"),
    (BatchFailedError, 502, "Too many stories failed to summarize"),
)


def _error_entry(error: Exception) -> tuple[int, str | None]:
    for error_class, status_code, message in ERROR_RESPONSES:
        if isinstance(error, error_class):
            return status_code, message
    return 500, "Internal server error"


def error_status(error: Exception) -> int:
    """HTTP status for an exception escaping a route."""
    return _error_entry(error)[0]


def error_response(error: Exception) -> dict[str, Any]:
    """Error body with a fixed message per error class; upstream detail stays in the log."""
    status_code, message = _error_entry(error)
    if message is None:
        message = str(error)
    return json_response(status_code, {"success": False, "error": message})


def parse_request(event: dict[str, Any]) -> HttpRequest:
    """
    Normalize an API Gateway REST (v1) or HTTP API (v2) proxy event.

    Raises:
        ValueError: If a base64-encoded body cannot be decoded
    """
    method = event.get("httpMethod") or (
        event.get("requestContext", {}).get("http", {}).get("method", "")
    )
    path = event.get("rawPath") or event.get("path") or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    headers = {
        str(key).lower(): str(value)
        for key, value in (event.get("headers") or {}).items()
    }

    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            raw_body = base64.b64decode(body, validate=True)
        except binascii.Error as e:
            raise ValueError("Request body is not valid base64") from e
    else:
        raw_body = body.encode("utf-8")

    return HttpRequest(method=method.upper(), path=path, headers=headers, body=raw_body)


def is_scheduled_event(event: dict[str, Any]) -> bool:
    return event.get("source") == "aws.events"


def handle_webhook(app: Application, request: HttpRequest) -> dict[str, Any]:
    """Verify, then answer every text message in a LINE webhook delivery."""
    signature = request.headers.get(SIGNATURE_HEADER, "")
    channel_secret = app.config.line.channel_secret.encode("utf-8")
    if not verify_signature(request.body, signature, channel_secret):
        raise AuthError("Invalid signature")

    try:
        webhook = WebhookEvent(raw_body=request.body, signature=signature).parse()
    except ValueError:
        return json_response(400, {"success": False, "error": "Invalid webhook payload"})

    logger = create_execution_logger("main", app.execution_id)
    replied = 0
    for event in webhook.events:
        if not event.is_text_message or not event.reply_token:
            logger.debug("Skipping non-text webhook event", event_type=event.type)
            continue
        try:
            reply = app.dispatcher.handle(event.text)
        except ConversationError as e:
            reply = str(e)
        except Exception as e:
            # Every text event gets a reply, whatever the dispatcher raised
            logger.error(
                f"Failed to handle webhook event: {type(e).__name__}",
                error_type=type(e).__name__,
            )
            reply = APOLOGY_TEXT

        messages = [app.composer.build_text_message(reply)]
        if app.publisher.reply(event.reply_token, messages):
            replied += 1
        elif event.user_id and app.publisher.push(event.user_id, messages):
            # Reply token expired or already used; push to the user instead
            replied += 1

    logger.info(
        "Webhook processed", event_count=len(webhook.events), replied=replied
    )
    return json_response(200, {"success": True})


def handle_hello(app: Application, request: HttpRequest) -> dict[str, Any]:
    return json_response(200, {"success": True, "message": "Hello from News Digest Bot"})


def handle_latest_title(app: Application, request: HttpRequest) -> dict[str, Any]:
    return json_response(
        200, {"success": True, "title": app.feed_fetcher.fetch_latest_title()}
    )


def handle_latest_stories(app: Application, request: HttpRequest) -> dict[str, Any]:
    items = app.feed_fetcher.fetch()
    return json_response(
        200, {"success": True, "stories": [item.to_dict() for item in items]}
    )


def handle_conversation(app: Application, request: HttpRequest) -> dict[str, Any]:
    """Answer a message posted as JSON {"text": ...} or as plain text."""
    text = request.body.decode("utf-8", errors="replace")
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConversationError("Body must be a JSON object with a text field") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
            raise ConversationError("Body must be a JSON object with a text field")
        text = payload["text"]

    return json_response(200, {"success": True, "reply": app.dispatcher.handle(text)})


def send_today_stories(app: Application, request: HttpRequest | None = None) -> dict[str, Any]:
    """Broadcast one carousel card per story."""
    metrics: dict[str, Any] = {
        "route": "sendTodayStories",
        "items_found": 0,
        "items_summarized": 0,
        "items_failed": 0,
        "messages_sent": 0,
        "errors": [],
    }
    try:
        items = app.feed_fetcher.fetch()
        metrics["items_found"] = len(items)

        summaries = app.orchestrator.summarize_all(items)
        metrics["items_summarized"] = sum(1 for s in summaries if s.ok)
        metrics["items_failed"] = len(summaries) - metrics["items_summarized"]

        carousels = [
            app.composer.build_carousel(batch)
            for batch in chunk(summaries, app.config.composer.max_cards)
        ]
        for batch in chunk(carousels, MAX_MESSAGES_PER_REQUEST):
            if app.publisher.broadcast(batch):
                metrics["messages_sent"] += len(batch)
            else:
                metrics["errors"].append("Broadcast failed")
    except NewsDigestError as e:
        metrics["errors"].append(str(e))
        raise
    finally:
        app.record_metrics(metrics)

    if metrics["errors"]:
        return json_response(502, {"success": False, "error": "Broadcast failed"})
    return json_response(
        200,
        {
            "success": True,
            "items": metrics["items_found"],
            "failed": metrics["items_failed"],
            "messages_sent": metrics["messages_sent"],
        },
    )


def broadcast_daily_summary(
    app: Application, request: HttpRequest | None = None
) -> dict[str, Any]:
    """Broadcast a single bubble summarizing the whole day."""
    metrics: dict[str, Any] = {
        "route": "broadcastDailySummary",
        "items_found": 0,
        "items_summarized": 0,
        "items_failed": 0,
        "messages_sent": 0,
        "errors": [],
    }
    try:
        items = app.feed_fetcher.fetch()
        metrics["items_found"] = len(items)

        summary = app.summarizer.summarize_all(items)
        metrics["items_summarized"] = len(items)

        if app.publisher.broadcast([app.composer.build_bubble(summary)]):
            metrics["messages_sent"] = 1
        else:
            metrics["errors"].append("Broadcast failed")
    except NewsDigestError as e:
        metrics["errors"].append(str(e))
        raise
    finally:
        app.record_metrics(metrics)

    if metrics["errors"]:
        return json_response(502, {"success": False, "error": "Broadcast failed"})
    return json_response(200, {"success": True, "items": metrics["items_found"]})


ROUTES = {
    "/webhook": ("POST", handle_webhook),
    "/hello": ("GET", handle_hello),
    "/getLatestTitle": ("GET", handle_latest_title),
    "/getLatestStories": ("GET", handle_latest_stories),
    "/sendTodayStories": ("GET", send_today_stories),
    "/broadcastDailySummary": ("GET", broadcast_daily_summary),
    "/conversation": ("POST", handle_conversation),
}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Route one Lambda invocation.

    Args:
        event: API Gateway proxy event or EventBridge scheduled event
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)
    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        lambda_function_name=getattr(context, "function_name", "unknown"),
    )

    try:
        if is_scheduled_event(event):
            action = event.get("action") or event.get("detail-type", "")
            main_logger.info("Scheduled invocation", action=action)
            handler = (
                broadcast_daily_summary
                if action == "broadcastDailySummary"
                else send_today_stories
            )
            request = None
        else:
            try:
                request = parse_request(event)
            except ValueError as e:
                response = json_response(400, {"success": False, "error": str(e)})
                main_logger.log_execution_end(success=False, status_code=400)
                return response

            route = ROUTES.get(request.path)
            if route is None:
                response = json_response(404, {"success": False, "error": "Not found"})
                main_logger.log_execution_end(success=False, status_code=404, path=request.path)
                return response
            method, handler = route
            if request.method != method:
                response = json_response(
                    405, {"success": False, "error": "Method not allowed"}
                )
                response["headers"]["Allow"] = method
                main_logger.log_execution_end(success=False, status_code=405, path=request.path)
                return response
            main_logger.info("Routing request", path=request.path, method=request.method)

        app = Application(get_app_config(), execution_id)
        response = handler(app, request)

    except Exception as e:
        main_logger.error(
            f"Request failed: {type(e).__name__}",
            error_type=type(e).__name__,
            error=str(e),
        )
        response = error_response(e)

    main_logger.log_execution_end(
        success=response["statusCode"] < 400, status_code=response["statusCode"]
    )
    return response
