"""LLM providers used to turn a conversation into note text.

A provider is anything with `complete(messages) -> str`, where messages is a
list of {"role": ..., "content": ...} dicts. The summarizer runs it in a
worker thread, so implementations may block.
"""

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Protocol

from .errors import ConfigError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"
TEMPERATURE = 0.3
REQUEST_TIMEOUT = 60


class LlmProvider(Protocol):
    def complete(self, messages: list[dict]) -> str:
        ...


def system_message(content: str) -> dict:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict:
    return {"role": "user", "content": content}


def _build_chat_url(api_base: str) -> str:
    api_base = (api_base or DEFAULT_API_BASE).strip().rstrip("/")
    if api_base.endswith("/chat/completions"):
        return api_base
    return api_base + "/chat/completions"


class OpenAICompatibleProvider:
    """Chat-completion client for OpenAI-compatible endpoints."""

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        model: str = DEFAULT_MODEL,
        api_key_env: str = DEFAULT_API_KEY_ENV,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_base = api_base
        self.model = model
        self.api_key_env = api_key_env
        self.timeout = timeout

    @property
    def url(self) -> str:
        return _build_chat_url(self.api_base)

    def _api_key(self) -> str:
        api_key = os.environ.get(self.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(f"Missing env var: {self.api_key_env}")
        return api_key

    def complete(self, messages: list[dict]) -> str:
        """Send one chat-completion request and return the first choice's text."""
        api_key = self._api_key()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        body = json.dumps({
            "model": self.model,
            "messages": messages,
            "temperature": TEMPERATURE,
        }).encode()

        req = urllib.request.Request(self.url, data=body, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            detail = ""
            try:
                detail = e.read().decode("utf-8", errors="replace")[:500]
            except OSError:
                pass
            raise ProviderError(
                f"Request to {self.url} failed with HTTP {e.code}. {detail}".strip()
            ) from e
        except (urllib.error.URLError, OSError) as e:
            raise ProviderError(f"Request failed: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Failed to parse response: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not isinstance(content, str):
            raise ProviderError("No content in response")
        logger.debug("Completion from %s: %d chars", self.model, len(content))
        return content


def _normalize_provider_name(provider: str) -> str:
    value = (provider or "").strip().lower().replace(" ", "_").replace("-", "_")
    if value in {"openai", "openai_compatible", "openai_compat", ""}:
        return "openai_compatible"
    return value


def build_provider(summarizer_cfg: dict) -> LlmProvider:
    """Select the provider implementation named in the summarizer config."""
    name = _normalize_provider_name(summarizer_cfg.get("provider", ""))
    if name == "openai_compatible":
        return OpenAICompatibleProvider(
            api_base=summarizer_cfg.get("api_base") or DEFAULT_API_BASE,
            model=summarizer_cfg.get("model") or DEFAULT_MODEL,
            api_key_env=summarizer_cfg.get("api_key_env") or DEFAULT_API_KEY_ENV,
        )
    raise ConfigError(f"Unknown LLM provider: {summarizer_cfg.get('provider')}")
