"""
Language-model provider protocol and DeepSeek client.

DeepSeek exposes an OpenAI-compatible chat completions endpoint; the client
posts one non-streaming request per call and maps every failure onto
UpstreamError.
"""
from typing import Any, Dict, Optional, Protocol
import logging

import httpx

from promptschola.core.config import settings, require_settings
from promptschola.core.errors import UpstreamError


logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 600
DEFAULT_TEMPERATURE = 0.4


class LanguageModelProvider(Protocol):
    """Opaque text generator."""

    def complete(
        self,
        prompt: str,
        system_instructions: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        """
        Return the completion text for ``prompt``.

        Raises:
            UpstreamError: on transport failure or a non-2xx response
        """
        ...


class DeepSeekClient:
    """LanguageModelProvider backed by the DeepSeek chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key or settings.DEEPSEEK_API_KEY
        self.base_url = (base_url or settings.DEEPSEEK_BASE_URL).rstrip("/")
        self.model = model or settings.DEEPSEEK_MODEL
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        self.transport = transport

    def _payload(self, prompt: str, system_instructions: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instructions},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def complete(
        self,
        prompt: str,
        system_instructions: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=self._payload(prompt, system_instructions, max_tokens, temperature),
                )
        except httpx.HTTPError as e:
            logger.error(f"[llm] DeepSeek transport error: {e}")
            raise UpstreamError("Error from language model API") from e

        if response.is_error:
            logger.error(
                "[llm] DeepSeek error response",
                extra={"status": response.status_code, "body": response.text[:500]},
            )
            raise UpstreamError("Error from language model API")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[llm] DeepSeek returned invalid JSON: {e}")
            raise UpstreamError("Error from language model API") from e

        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""


def get_llm_provider() -> LanguageModelProvider:
    """FastAPI dependency; overridden in tests."""
    require_settings("DEEPSEEK_API_KEY")
    return DeepSeekClient()
