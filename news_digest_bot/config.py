"""Configuration management for News Digest Bot."""

import json
import os
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from .errors import ConfigError
from .logging_config import create_execution_logger
from .retry import RetryPolicy


@dataclass(frozen=True)
class FeedConfig:
    """Configuration for the daily feed download."""

    url: str = "https://www.daemonology.net/hn-daily/index.rss"
    timeout: float = 30.0
    retry_attempts: int = 4
    retry_base_delay: float = 0.5
    retry_multiplier: float = 2.0
    retry_max_delay: float = 5.0
    retry_jitter: float = 0.1
    retry_max_elapsed: float = 20.0

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
            max_elapsed=self.retry_max_elapsed,
        )


@dataclass(frozen=True)
class BedrockConfig:
    """Configuration for Amazon Bedrock."""

    model_id: str = "amazon.nova-micro-v1:0"
    translate_model_id: str = "amazon.nova-micro-v1:0"
    region: str = "us-east-1"
    max_tokens: int = 1000
    timeout: float = 30.0
    temperature: float = 0.05


@dataclass(frozen=True)
class LineConfig:
    """Configuration for the LINE Messaging API."""

    channel_secret: str
    channel_token: str
    broadcast_url: str = "https://api.line.me/v2/bot/message/broadcast"
    push_url: str = "https://api.line.me/v2/bot/message/push"
    reply_url: str = "https://api.line.me/v2/bot/message/reply"
    timeout: float = 30.0
    retry_attempts: int = 3
    backoff_factor: float = 2.0


@dataclass(frozen=True)
class KagiConfig:
    """Configuration for the Kagi Universal Summarizer."""

    api_key: str
    summarize_url: str = "https://kagi.com/api/v0/summarize"
    engine: str = "cecil"
    target_language: str = "EN"
    timeout: float = 60.0


@dataclass(frozen=True)
class OrchestratorConfig:
    """Configuration for concurrent per-item summarization."""

    max_workers: int = 4
    deadline_seconds: float = 120.0
    fallback_summary: str = "Summary unavailable"
    # None keeps every batch alive no matter how many items fail
    max_failure_ratio: float | None = None


@dataclass(frozen=True)
class ComposerConfig:
    """Limits and styling for LINE Flex messages."""

    max_cards: int = 12
    title_limit: int = 80
    summary_limit: int = 300
    section_limit: int = 1000
    alt_text_limit: int = 400
    text_limit: int = 5000
    truncation_marker: str = "…"
    accent_color: str = "#1DB446"
    header_title: str = "Hacker News Daily"


@dataclass(frozen=True)
class PromptTemplates:
    """Prompt templates; each uses str.format placeholders."""

    summary_single: str
    summary_all: str
    language_code: str
    translate: str
    conversation: str


@dataclass(frozen=True)
class BotSecrets:
    """Credentials fetched once from Secrets Manager."""

    channel_secret: str
    channel_token: str
    kagi_api_key: str = ""


@dataclass(frozen=True)
class AppConfig:
    """Everything the bot needs, built once per process and never mutated."""

    feed: FeedConfig
    bedrock: BedrockConfig
    line: LineConfig
    kagi: KagiConfig
    orchestrator: OrchestratorConfig
    composer: ComposerConfig
    prompts: PromptTemplates
    aws_region: str
    metrics_enabled: bool


DEFAULT_PROMPTS = {
    "summary_single": (
        "Summarize the Hacker News story below in 2 to 3 plain sentences.\n"
        "Do not add a title, a preamble or bullet points.\n"
        "\n"
        "Title: {title}\n"
        "URL: {link}"
    ),
    "summary_all": (
        "Write a short digest of today's Hacker News stories.\n"
        "Group related stories into themes and separate each theme with a blank line.\n"
        "Start each theme with a short heading line, followed by 1 to 3 sentences.\n"
        "Do not use markdown.\n"
        "\n"
        "{stories}"
    ),
    "language_code": (
        "Reply with only the ISO 639-1 language code of the text below, in lower case.\n"
        "Use zh-tw for Traditional Chinese and zh-cn for Simplified Chinese.\n"
        "\n"
        "{text}"
    ),
    "translate": (
        "Translate the text below into the language with code {language_code}.\n"
        "Reply with the translation only.\n"
        "\n"
        "{text}"
    ),
    "conversation": (
        "You are a helpful assistant in a chat app about daily tech news.\n"
        "Answer briefly and in the language of the question.\n"
        "\n"
        "{text}"
    ),
}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Main configuration manager."""

    PROMPTS_DIR = "prompts"

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.feed_url = os.getenv("FEED_URL", FeedConfig.url)
        self.secret_name = os.getenv("LINE_SECRET_NAME", "news-digest-bot-secrets")
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.bedrock_model_id = os.getenv("BEDROCK_MODEL_ID", BedrockConfig.model_id)
        self.bedrock_translate_model_id = os.getenv(
            "BEDROCK_TRANSLATE_MODEL_ID", self.bedrock_model_id
        )
        self.bedrock_timeout = _env_float("BEDROCK_TIMEOUT", BedrockConfig.timeout)
        self.summary_concurrency = _env_int(
            "SUMMARY_CONCURRENCY", OrchestratorConfig.max_workers
        )
        self.summary_deadline = _env_float(
            "SUMMARY_DEADLINE", OrchestratorConfig.deadline_seconds
        )
        self.feed_retry_attempts = _env_int(
            "FEED_RETRY_ATTEMPTS", FeedConfig.retry_attempts
        )
        self.feed_retry_base_delay = _env_float(
            "FEED_RETRY_BASE_DELAY", FeedConfig.retry_base_delay
        )
        self.feed_retry_max_delay = _env_float(
            "FEED_RETRY_MAX_DELAY", FeedConfig.retry_max_delay
        )
        self.feed_retry_max_elapsed = _env_float(
            "FEED_RETRY_MAX_ELAPSED", FeedConfig.retry_max_elapsed
        )
        self.kagi_engine = os.getenv("KAGI_ENGINE", KagiConfig.engine)
        self.kagi_target_language = os.getenv(
            "KAGI_TARGET_LANGUAGE", KagiConfig.target_language
        )
        self.summary_max_failure_ratio = _env_float(
            "SUMMARY_MAX_FAILURE_RATIO", OrchestratorConfig.max_failure_ratio
        )
        self.metrics_enabled = _env_bool("METRICS_ENABLED", True)

        if self.summary_concurrency < 1:
            raise ConfigError("SUMMARY_CONCURRENCY must be at least 1")
        if self.feed_retry_attempts < 1:
            raise ConfigError("FEED_RETRY_ATTEMPTS must be at least 1")
        if self.summary_max_failure_ratio is not None and not (
            0.0 <= self.summary_max_failure_ratio <= 1.0
        ):
            raise ConfigError("SUMMARY_MAX_FAILURE_RATIO must be between 0 and 1")

    def get_feed_config(self) -> FeedConfig:
        """Get feed download configuration."""
        return FeedConfig(
            url=self.feed_url,
            retry_attempts=self.feed_retry_attempts,
            retry_base_delay=self.feed_retry_base_delay,
            retry_max_delay=self.feed_retry_max_delay,
            retry_max_elapsed=self.feed_retry_max_elapsed,
        )

    def get_bedrock_config(self) -> BedrockConfig:
        """Get Bedrock configuration."""
        return BedrockConfig(
            model_id=self.bedrock_model_id,
            translate_model_id=self.bedrock_translate_model_id,
            region=self.aws_region,
            timeout=self.bedrock_timeout,
        )

    def get_line_config(self, secrets: BotSecrets) -> LineConfig:
        """Get LINE configuration using the fetched channel credentials."""
        return LineConfig(
            channel_secret=secrets.channel_secret,
            channel_token=secrets.channel_token,
        )

    def get_kagi_config(self, secrets: BotSecrets) -> KagiConfig:
        """Get Kagi configuration."""
        return KagiConfig(
            api_key=secrets.kagi_api_key,
            engine=self.kagi_engine,
            target_language=self.kagi_target_language,
        )

    def get_orchestrator_config(self) -> OrchestratorConfig:
        """Get orchestrator configuration."""
        return OrchestratorConfig(
            max_workers=self.summary_concurrency,
            deadline_seconds=self.summary_deadline,
            max_failure_ratio=self.summary_max_failure_ratio,
        )

    def get_composer_config(self) -> ComposerConfig:
        """Get composer configuration."""
        return ComposerConfig()

    def get_prompt_templates(self) -> PromptTemplates:
        """Load prompt templates from the prompts directory, falling back to defaults."""
        prompts_dir = Path(self.PROMPTS_DIR)
        if not prompts_dir.exists():
            # Try in Lambda root directory
            prompts_dir = Path("/var/task") / self.PROMPTS_DIR

        templates = {}
        for name, default in DEFAULT_PROMPTS.items():
            template_file = prompts_dir / f"{name}.txt"
            if template_file.exists():
                templates[name] = template_file.read_text(encoding="utf-8").strip()
            else:
                templates[name] = default
        return PromptTemplates(**templates)

    def load(self, execution_id: str | None = None) -> AppConfig:
        """Build the immutable application configuration, secrets included."""
        secrets = get_bot_secrets(self.secret_name, self.aws_region, execution_id)
        return AppConfig(
            feed=self.get_feed_config(),
            bedrock=self.get_bedrock_config(),
            line=self.get_line_config(secrets),
            kagi=self.get_kagi_config(secrets),
            orchestrator=self.get_orchestrator_config(),
            composer=self.get_composer_config(),
            prompts=self.get_prompt_templates(),
            aws_region=self.aws_region,
            metrics_enabled=self.metrics_enabled,
        )


def get_bot_secrets(
    secret_name: str, aws_region: str, execution_id: str | None = None
) -> BotSecrets:
    """
    Retrieve channel and API credentials.

    Environment variables LINE_CHANNEL_SECRET, LINE_CHANNEL_TOKEN and
    KAGI_API_KEY take precedence; whatever is missing is read from a JSON
    secret in AWS Secrets Manager. Secret values are never logged.

    Raises:
        ConfigError: If the secret cannot be read or a LINE credential is missing
    """
    secrets_logger = create_execution_logger("config", execution_id)

    values = {
        "channel_secret": os.getenv("LINE_CHANNEL_SECRET", ""),
        "channel_token": os.getenv("LINE_CHANNEL_TOKEN", ""),
        "kagi_api_key": os.getenv("KAGI_API_KEY", ""),
    }

    if not (values["channel_secret"] and values["channel_token"]):
        if not secret_name or not secret_name.strip():
            raise ConfigError("Secret name cannot be empty")

        try:
            secrets_logger.info(
                f"Retrieving bot credentials from Secrets Manager: {secret_name}"
            )
            secrets_client = boto3.client("secretsmanager", region_name=aws_region)
            response = secrets_client.get_secret_value(SecretId=secret_name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            secrets_logger.error(
                f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
            )
            raise ConfigError(f"Failed to retrieve secret {secret_name}") from e

        secret_value = response.get("SecretString", "")
        try:
            secret_data = json.loads(secret_value)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Secret {secret_name} must be a JSON object") from e
        if not isinstance(secret_data, dict):
            raise ConfigError(f"Secret {secret_name} must be a JSON object")

        for key in values:
            if not values[key]:
                stored = secret_data.get(key, "")
                values[key] = stored.strip() if isinstance(stored, str) else ""

    missing = [key for key in ("channel_secret", "channel_token") if not values[key]]
    if missing:
        raise ConfigError(f"Missing bot credentials: {', '.join(missing)}")

    secrets_logger.info(
        "Bot credentials loaded", kagi_configured=bool(values["kagi_api_key"])
    )
    return BotSecrets(**values)
