"""Unit tests for the Bedrock summarizer client."""

import io
import json
from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError

from news_digest_bot.config import DEFAULT_PROMPTS, BedrockConfig, PromptTemplates
from news_digest_bot.errors import SummaryTimeoutError, SummaryUpstreamError
from news_digest_bot.models import FeedItem
from news_digest_bot.summarize import Summarizer

PROMPTS = PromptTemplates(**DEFAULT_PROMPTS)


def nova_response(text):
    body = {"output": {"message": {"role": "assistant", "content": [{"text": text}]}}}
    return {"body": io.BytesIO(json.dumps(body).encode())}


def llama_response(text):
    return {"body": io.BytesIO(json.dumps({"generation": text}).encode())}


def make_summarizer(client, **config_overrides):
    config = BedrockConfig(**config_overrides)
    return Summarizer(config, PROMPTS, client=client)


def sent_body(client):
    return json.loads(client.invoke_model.call_args.kwargs["body"])


class TestSummarizerUnit:
    """Unit tests for Summarizer."""

    def test_summarize_single_uses_nova_message_shape(self):
        """Nova models get a messages/inferenceConfig request."""
        client = Mock()
        client.invoke_model.return_value = nova_response("  A short summary.  ")
        summarizer = make_summarizer(client)

        result = summarizer.summarize_single("Rust in the kernel", "https://example.com/r")

        assert result == "A short summary."
        body = sent_body(client)
        prompt = body["messages"][0]["content"][0]["text"]
        assert "Rust in the kernel" in prompt
        assert "https://example.com/r" in prompt
        assert body["inferenceConfig"]["maxTokens"] == 1000
        assert client.invoke_model.call_args.kwargs["modelId"] == "amazon.nova-micro-v1:0"

    def test_llama_models_use_prompt_shape(self):
        """Llama models get the chat-template prompt and a generation response."""
        client = Mock()
        client.invoke_model.return_value = llama_response("Llama says hi")
        summarizer = make_summarizer(client, model_id="meta.llama3-8b-instruct-v1:0")

        assert summarizer.ask("hello") == "Llama says hi"
        body = sent_body(client)
        assert body["prompt"].startswith("<|begin_of_text|>")
        assert body["max_gen_len"] == 1000
        assert body["temperature"] == 0.3

    def test_summarize_all_returns_dated_aggregate(self):
        """The aggregate prompt lists every story and the body is kept verbatim."""
        client = Mock()
        client.invoke_model.return_value = nova_response("Theme one\nDetails.\n\nTheme two\nMore.")
        summarizer = make_summarizer(client)
        published = datetime(2024, 5, 2, tzinfo=UTC)
        items = [
            FeedItem(rank=1, title="Alpha", link="https://example.com/a", published=published),
            FeedItem(rank=2, title="Beta", link="https://example.com/b", published=published),
        ]

        summary = summarizer.summarize_all(items)

        prompt = sent_body(client)["messages"][0]["content"][0]["text"]
        assert "1. Alpha https://example.com/a" in prompt
        assert "2. Beta https://example.com/b" in prompt
        assert summary.sections == ["Theme one\nDetails.", "Theme two\nMore."]
        assert summary.generated_at.tzinfo is not None

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("en", "en"),
            ("FR", "fr"),
            ("zh_TW", "zh-tw"),
            ("  ja.\n", "ja"),
            ("pt-BR", "pt-br"),
        ],
    )
    def test_detect_language_normalizes_codes(self, raw, expected):
        """Model output is reduced to a lower-case language code."""
        client = Mock()
        client.invoke_model.return_value = nova_response(raw)
        summarizer = make_summarizer(client)

        assert summarizer.detect_language("Bonjour") == expected
        assert sent_body(client)["inferenceConfig"]["temperature"] == 0.0

    def test_detect_language_rejects_unusable_output(self):
        """Output with no language code is an upstream error."""
        client = Mock()
        client.invoke_model.return_value = nova_response("???")
        summarizer = make_summarizer(client)

        with pytest.raises(SummaryUpstreamError):
            summarizer.detect_language("Bonjour")

    def test_translate_uses_translation_model(self):
        """Translation goes to the translation model with the target code in the prompt."""
        client = Mock()
        client.invoke_model.return_value = nova_response("Bonjour le monde")
        summarizer = make_summarizer(client, translate_model_id="amazon.nova-lite-v1:0")

        assert summarizer.translate("Hello world", "fr") == "Bonjour le monde"
        assert client.invoke_model.call_args.kwargs["modelId"] == "amazon.nova-lite-v1:0"
        prompt = sent_body(client)["messages"][0]["content"][0]["text"]
        assert "fr" in prompt
        assert "Hello world" in prompt

    def test_client_error_is_upstream_error(self):
        """Bedrock ClientError becomes SummaryUpstreamError with the error code."""
        client = Mock()
        client.invoke_model.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}},
            "InvokeModel",
        )
        summarizer = make_summarizer(client)

        with pytest.raises(SummaryUpstreamError) as exc_info:
            summarizer.summarize_single("t", "https://example.com")

        assert "AccessDeniedException" in str(exc_info.value)
        assert exc_info.value.kind == "upstream"

    def test_read_timeout_is_timeout_error(self):
        """Botocore read timeouts become SummaryTimeoutError."""
        client = Mock()
        client.invoke_model.side_effect = ReadTimeoutError(endpoint_url="https://bedrock")
        summarizer = make_summarizer(client)

        with pytest.raises(SummaryTimeoutError) as exc_info:
            summarizer.ask("hello")

        assert exc_info.value.kind == "timeout"

    @pytest.mark.parametrize(
        "payload",
        [
            {"output": {"message": {"content": []}}},
            {"output": {"message": {"content": [{"text": "   "}]}}},
            {"unexpected": True},
            [],
            "just a string",
            {"output": "text"},
            {"output": {"message": "text"}},
            {"output": {"message": {"content": "text"}}},
            {"output": {"message": {"content": ["text"]}}},
            {"output": {"message": {"content": [{"text": 42}]}}},
        ],
    )
    def test_empty_or_unexpected_response_is_upstream_error(self, payload):
        """Responses without usable text are upstream errors."""
        client = Mock()
        client.invoke_model.return_value = {"body": io.BytesIO(json.dumps(payload).encode())}
        summarizer = make_summarizer(client)

        with pytest.raises(SummaryUpstreamError):
            summarizer.ask("hello")

    def test_invalid_json_is_upstream_error(self):
        """A body that is not JSON is an upstream error."""
        client = Mock()
        client.invoke_model.return_value = {"body": io.BytesIO(b"<html>")}
        summarizer = make_summarizer(client)

        with pytest.raises(SummaryUpstreamError):
            summarizer.ask("hello")

    @pytest.mark.parametrize("payload", [{"generation": 42}, {"generation": ["a"]}, {"text": "a"}])
    def test_unexpected_llama_response_is_upstream_error(self, payload):
        client = Mock()
        client.invoke_model.return_value = {"body": io.BytesIO(json.dumps(payload).encode())}
        summarizer = make_summarizer(client, model_id="meta.llama3-8b-instruct-v1:0")

        with pytest.raises(SummaryUpstreamError):
            summarizer.summarize_single("Title", "https://example.com")
