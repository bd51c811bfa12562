from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import openai
import requests
from openai import OpenAI

from covergen.errors import LLMError
from covergen.types import (
    GenerationRequest,
    GenerationResponse,
    ProviderSettings,
    TokenUsage,
    ValidationOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProviderConfig:
    base_url: str
    api_key: str = ""


class LLMProvider:
    """Capability contract every backend implements.

    ``generate`` must raise ``LLMError`` for every failure; callers never see a
    transport exception.
    """

    id: str = ""
    name: str = ""
    requires_api_key: bool = False
    supports_custom_endpoint: bool = False

    def configure(self, settings: ProviderSettings) -> None:
        """Apply stored settings (endpoint, key) before a call.

        Fields the settings leave unset fall back to the values the provider
        was constructed with, so an earlier call never leaks into this one.
        """

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        raise NotImplementedError

    def validate_config(self, settings: ProviderSettings) -> ValidationOutcome:
        raise NotImplementedError

    def list_models(self) -> list[str]:
        return []

    def error(self, message: str, code: str) -> LLMError:
        return LLMError(message, code, self.id)  # type: ignore[arg-type]


class OllamaProvider(LLMProvider):
    id = "ollama"
    name = "Ollama (Local)"
    requires_api_key = False
    supports_custom_endpoint = True

    def __init__(self, config: ProviderConfig | None = None, *, session: requests.Session | None = None):
        self.config = config or ProviderConfig(base_url="http://localhost:11434")
        self.defaults = replace(self.config)
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return self.config.base_url.rstrip("/")

    def configure(self, settings: ProviderSettings) -> None:
        self.config = replace(self.defaults, base_url=settings.endpoint or self.defaults.base_url)

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        body: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }
        if request.response_schema:
            body["format"] = request.response_schema

        try:
            response = self.session.post(
                f"{self.endpoint}/api/generate",
                json=body,
                timeout=request.timeout_sec,
            )
        except requests.Timeout as exc:
            raise self.error(
                f"Ollama request timed out after {request.timeout_sec:g}s. "
                "Try a smaller model or increase the timeout.",
                "TIMEOUT",
            ) from exc
        except requests.ConnectionError as exc:
            raise self.error(
                f"Cannot connect to Ollama. Is it running on {self.endpoint}?",
                "NETWORK_ERROR",
            ) from exc
        except requests.RequestException as exc:
            raise self.error(str(exc) or "Ollama request failed", "NETWORK_ERROR") from exc

        if response.status_code == 404:
            raise self.error(
                f"Model '{request.model}' not found. Make sure the model is pulled in Ollama.",
                "INVALID_RESPONSE",
            )
        if not response.ok:
            message = self._error_message(response)
            raise self.error(message, "NETWORK_ERROR")

        try:
            data = response.json()
        except ValueError as exc:
            raise self.error("Invalid response format from Ollama", "INVALID_RESPONSE") from exc

        content = data.get("response") if isinstance(data, dict) else None
        if not content:
            raise self.error("Invalid response format from Ollama", "INVALID_RESPONSE")

        usage = None
        prompt_tokens = data.get("prompt_eval_count")
        completion_tokens = data.get("eval_count")
        if prompt_tokens and completion_tokens:
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )

        if data.get("done_reason") == "length":
            finish_reason = "length"
        else:
            finish_reason = "stop" if data.get("done") else "error"

        return GenerationResponse(
            content=content,
            model=data.get("model") or request.model,
            usage=usage,
            finish_reason=finish_reason,
        )

    def validate_config(self, settings: ProviderSettings) -> ValidationOutcome:
        endpoint = (settings.endpoint or self.endpoint).rstrip("/")
        try:
            response = self.session.get(f"{endpoint}/api/tags", timeout=5)
        except requests.RequestException:
            return ValidationOutcome(
                valid=False,
                error=f"Cannot connect to Ollama at {endpoint}. Is it running?",
            )

        if not response.ok:
            return ValidationOutcome(
                valid=False,
                error=f"Cannot connect to Ollama at {endpoint}. HTTP {response.status_code}",
            )

        models = self._model_names(response)
        if not models:
            return ValidationOutcome(
                valid=False,
                error="No models found in Ollama. Pull a model first (e.g. ollama pull llama3.1).",
            )
        if settings.model not in models:
            return ValidationOutcome(
                valid=False,
                error=f"Model '{settings.model}' not found. Available models: {', '.join(models)}",
                available_models=models,
            )
        return ValidationOutcome(valid=True, available_models=models)

    def list_models(self) -> list[str]:
        try:
            response = self.session.get(f"{self.endpoint}/api/tags", timeout=5)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to list Ollama models: %s", exc)
            return []
        return self._model_names(response)

    @staticmethod
    def _model_names(response: requests.Response) -> list[str]:
        try:
            data = response.json()
        except ValueError:
            return []
        return [item["name"] for item in data.get("models", []) if item.get("name")]

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"HTTP {response.status_code}: {response.reason}"


class OpenAIProvider(LLMProvider):
    id = "openai"
    name = "OpenAI"
    requires_api_key = True
    supports_custom_endpoint = True

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client_factory: Callable[[ProviderConfig], Any] | None = None,
    ):
        self.config = config or ProviderConfig(base_url="https://api.openai.com/v1")
        self.defaults = replace(self.config)
        self.client_factory = client_factory or self._build_client
        self.client: Any = None

    def configure(self, settings: ProviderSettings) -> None:
        config = self._resolve(settings)
        if config != self.config:
            self.config = config
            self.client = None

    def _resolve(self, settings: ProviderSettings) -> ProviderConfig:
        return ProviderConfig(
            base_url=settings.endpoint or self.defaults.base_url,
            api_key=settings.api_key or self.defaults.api_key,
        )

    @staticmethod
    def _build_client(config: ProviderConfig) -> OpenAI:
        return OpenAI(base_url=config.base_url, api_key=config.api_key)

    def _client(self) -> Any:
        if self.client is None:
            self.client = self.client_factory(self.config)
        return self.client

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        if not self.config.api_key:
            raise self.error("OpenAI API key not configured", "INVALID_API_KEY")

        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "timeout": request.timeout_sec,
        }
        if request.response_schema:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "cover_letter", "schema": request.response_schema},
            }

        try:
            response = self._client().chat.completions.create(**kwargs)
        except Exception as exc:
            raise self._translate(exc, request) from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise self.error(
                "No response choices generated. This might be due to content filtering.",
                "INVALID_RESPONSE",
            )

        finish_reason = getattr(choices[0], "finish_reason", None)
        if finish_reason == "content_filter":
            raise self.error(
                "Content was blocked by safety filters. Try rephrasing your profile.",
                "INVALID_RESPONSE",
            )
        if finish_reason == "length":
            raise self.error(
                f"Response was truncated at the token limit ({request.max_tokens} tokens). "
                "Increase the max tokens setting (recommended: 4096-8192).",
                "INVALID_RESPONSE",
            )

        message = getattr(choices[0], "message", None)
        refusal = getattr(message, "refusal", None)
        if refusal:
            raise self.error(f"Content was blocked: {refusal}", "INVALID_RESPONSE")

        text = self._extract_chat_text(response)
        if not text:
            raise self.error("Empty response from OpenAI", "INVALID_RESPONSE")

        usage = None
        raw_usage = getattr(response, "usage", None)
        if raw_usage is not None:
            usage = TokenUsage(
                prompt_tokens=getattr(raw_usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(raw_usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(raw_usage, "total_tokens", 0) or 0,
            )

        return GenerationResponse(
            content=text,
            model=getattr(response, "model", None) or request.model,
            usage=usage,
            finish_reason="stop",
        )

    def validate_config(self, settings: ProviderSettings) -> ValidationOutcome:
        if not settings.api_key:
            return ValidationOutcome(valid=False, error="API key is required for OpenAI")

        # Candidate settings are unsaved; test them on a separate instance.
        candidate = OpenAIProvider(self._resolve(settings), client_factory=self.client_factory)
        try:
            candidate.generate(
                GenerationRequest(prompt="Hello", model=settings.model, max_tokens=16, timeout_sec=10)
            )
        except LLMError as exc:
            if exc.code == "INVALID_RESPONSE" and "truncated" in str(exc):
                # A 16-token reply is expected to hit the limit; the key and model work.
                return ValidationOutcome(valid=True, available_models=candidate.list_models() or None)
            return ValidationOutcome(valid=False, error=str(exc))
        return ValidationOutcome(valid=True, available_models=candidate.list_models() or None)

    def list_models(self) -> list[str]:
        if not self.config.api_key:
            return []
        try:
            page = self._client().models.list()
        except Exception as exc:
            logger.warning("Failed to list OpenAI models: %s", exc)
            return []
        return sorted(model.id for model in getattr(page, "data", []) if getattr(model, "id", None))

    def _translate(self, exc: Exception, request: GenerationRequest) -> LLMError:
        if isinstance(exc, openai.AuthenticationError):
            return self.error("Invalid OpenAI API key.", "INVALID_API_KEY")
        if isinstance(exc, openai.RateLimitError):
            return self.error("OpenAI API quota or rate limit exceeded. Check your usage.", "RATE_LIMIT")
        if isinstance(exc, openai.APITimeoutError):
            return self.error(f"OpenAI request timed out after {request.timeout_sec:g}s", "TIMEOUT")
        if isinstance(exc, openai.APIConnectionError):
            return self.error(f"Cannot reach OpenAI at {self.config.base_url}", "NETWORK_ERROR")
        if isinstance(exc, openai.NotFoundError):
            return self.error(f"Model '{request.model}' not found or not available", "INVALID_RESPONSE")

        status_code = getattr(exc, "status_code", None)
        message = str(exc).strip() or exc.__class__.__name__
        lowered = message.lower()
        if status_code == 429 or "quota" in lowered:
            return self.error("OpenAI API quota or rate limit exceeded. Check your usage.", "RATE_LIMIT")
        if "safety" in lowered or "content_policy" in lowered:
            return self.error(
                "Content was blocked by safety filters. Try rephrasing your profile.",
                "INVALID_RESPONSE",
            )
        logger.warning("OpenAI call failed provider=%s error=%s", self.id, message)
        return self.error(message, "NETWORK_ERROR")

    @staticmethod
    def _extract_chat_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""

        message = getattr(choices[0], "message", None)
        if message is None:
            return ""

        content = getattr(message, "content", "")
        if isinstance(content, str):
            return content
        if content is None:
            return ""
        return str(content)
