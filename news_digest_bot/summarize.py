"""Language-model client for News Digest Bot, backed by Amazon Bedrock."""

import json
import re
import time
from datetime import UTC, datetime

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from .config import BedrockConfig, PromptTemplates
from .errors import SummaryTimeoutError, SummaryUpstreamError
from .logging_config import create_execution_logger
from .models import AggregateSummary, FeedItem

_LANGUAGE_CODE_RE = re.compile(r"[a-z]{2,3}(?:-[a-z]{2,4})?")


class Summarizer:
    """Prompt-templated calls to a Bedrock model.

    Every call is a single request with a bounded timeout. Nothing is retried
    here: a repeated model call costs tokens and is not guaranteed to be
    harmless on the provider side, so callers decide.
    """

    def __init__(
        self,
        config: BedrockConfig,
        prompts: PromptTemplates,
        execution_id: str | None = None,
        client=None,
    ):
        """Initialize the summarizer with Bedrock configuration."""
        self.config = config
        self.prompts = prompts
        self.logger = create_execution_logger("summarizer", execution_id)
        self.bedrock_client = client or boto3.client(
            "bedrock-runtime",
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=config.timeout,
                read_timeout=config.timeout,
                retries={"total_max_attempts": 1},
            ),
        )
        self.logger.info(
            "Initialized Bedrock client", region=config.region, model=config.model_id
        )

    def summarize_single(self, title: str, link: str) -> str:
        """Return a 2-3 sentence summary of one story."""
        prompt = self.prompts.summary_single.format(title=title, link=link)
        return self.invoke(prompt)

    def summarize_all(self, items: list[FeedItem]) -> AggregateSummary:
        """Return one sectioned digest covering all items."""
        stories = "\n\n".join(
            f"{item.rank}. {item.title} {item.link}" for item in items
        )
        prompt = self.prompts.summary_all.format(stories=stories)
        body = self.invoke(prompt)
        return AggregateSummary(generated_at=datetime.now(UTC), body=body)

    def detect_language(self, text: str) -> str:
        """Return the language code of text, e.g. 'en' or 'zh-tw'."""
        prompt = self.prompts.language_code.format(text=text)
        raw = self.invoke(prompt, temperature=0.0)
        match = _LANGUAGE_CODE_RE.search(raw.strip().lower().replace("_", "-"))
        if not match:
            raise SummaryUpstreamError(f"Unrecognized language code: {raw[:20]!r}")
        return match.group(0)

    def translate(self, text: str, target_language_code: str) -> str:
        """Translate text into the target language."""
        prompt = self.prompts.translate.format(
            language_code=target_language_code, text=text
        )
        return self.invoke(prompt, model_id=self.config.translate_model_id)

    def ask(self, text: str) -> str:
        """Free-form reply to a chat message."""
        prompt = self.prompts.conversation.format(text=text)
        return self.invoke(prompt, temperature=0.3)

    def invoke(
        self,
        prompt: str,
        model_id: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Send one prompt to Bedrock and return the generated text.

        Raises:
            SummaryTimeoutError: The model did not answer in time
            SummaryUpstreamError: Provider error or unusable response
        """
        model_id = model_id or self.config.model_id
        if temperature is None:
            temperature = self.config.temperature
        is_llama = "llama" in model_id.lower()

        if is_llama:
            request_body = {
                "prompt": self._format_llama_prompt(prompt),
                "max_gen_len": self.config.max_tokens,
                "temperature": temperature,
            }
        else:
            request_body = {
                "messages": [{"role": "user", "content": [{"text": prompt}]}],
                "inferenceConfig": {
                    "maxTokens": self.config.max_tokens,
                    "temperature": temperature,
                },
            }

        start_time = time.time()
        try:
            response = self.bedrock_client.invoke_model(
                modelId=model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
            text = self._extract_text(response_body, is_llama)
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            self.logger.warning("Bedrock call timed out", model_id=model_id)
            raise SummaryTimeoutError(f"Bedrock timed out after {self.config.timeout}s") from e
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            self.logger.error(
                f"Bedrock client error: {error_code}", error_code=error_code, model_id=model_id
            )
            raise SummaryUpstreamError(f"Bedrock error {error_code}") from e
        except (BotoCoreError, ValueError, KeyError) as e:
            self.logger.error(f"Unexpected Bedrock failure: {type(e).__name__}", model_id=model_id)
            raise SummaryUpstreamError(type(e).__name__) from e

        response_time_ms = int((time.time() - start_time) * 1000)
        if not text:
            self.logger.warning(
                "Empty response from model",
                model_id=model_id,
                response_keys=list(response_body.keys()),
            )
            raise SummaryUpstreamError("Empty response from model")

        self.logger.info(
            "Bedrock response received",
            model_id=model_id,
            response_length=len(text),
            response_time_ms=response_time_ms,
        )
        return text

    def _extract_text(self, response_body, is_llama: bool) -> str:
        """Pull the generated text out of a model response.

        Raises:
            SummaryUpstreamError: The response does not have the expected shape
        """
        if not isinstance(response_body, dict):
            raise SummaryUpstreamError("Unexpected response shape")

        if is_llama:
            text = response_body.get("generation")
        else:
            # Nova / Mistral Invoke API shape: output.message.content[0].text
            output = response_body.get("output")
            message = output.get("message") if isinstance(output, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            first = content[0] if isinstance(content, list) and content else None
            text = first.get("text") if isinstance(first, dict) else None

        if text is None:
            return ""
        if not isinstance(text, str):
            raise SummaryUpstreamError("Unexpected response shape")
        return text.strip()

    def _format_llama_prompt(self, prompt: str) -> str:
        """Format prompt with Llama 3 chat template tags."""
        return (
            "<|begin_of_text|><|start_header_id|>user<|end_header_id|>\n\n"
            f"{prompt}<|eot_id|><|start_header_id|>assistant<|end_header_id|>\n\n"
        )
