"""OpenAI / Azure OpenAI text-completion backend."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import yaml
from openai import AzureOpenAI, OpenAI, OpenAIError

from ..core.env_utils import parse_float, parse_int
from ..core.errors import BackendUnavailable

logger = logging.getLogger(__name__)

CompletionBackend = Callable[[str], str]

_DEFAULT_MODEL = "gpt-4o-mini"
_DEFAULT_AZURE_API_VERSION = "2024-12-01-preview"


@dataclass(frozen=True)
class LlmCfg:
    """Language-model connection and sampling settings."""

    api_key: str
    model: str
    endpoint: str
    api_version: str
    use_azure: bool
    temperature: float
    max_tokens: int


def _load_yaml(path: Optional[str]) -> dict[str, Any]:
    if not path:
        return {}
    path_obj = Path(path)
    if not path_obj.exists():
        return {}
    with path_obj.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _normalize_endpoint(value: str) -> str:
    raw = (value or "").strip()
    if not raw:
        return raw
    parsed = urlsplit(raw)
    if parsed.scheme and parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}".rstrip("/")
    marker = raw.lower().find("/openai/")
    if marker != -1:
        return raw[:marker].rstrip("/")
    return raw.rstrip("/")


def _pick(name: str, ycfg: dict[str, Any], key: str, default: str = "") -> str:
    value = os.getenv(name)
    if value:
        return value.strip()
    value = ycfg.get(key)
    return str(value).strip() if value not in (None, "") else default


def load_llm_config() -> LlmCfg:
    """Resolve backend settings from the environment and optional YAML file.

    Azure settings win when both an Azure endpoint and key are present.

    :raises BackendUnavailable: If no usable credentials are configured.
    """
    ycfg = _load_yaml(os.getenv("NLQ_LLM_CONFIG_PATH"))
    endpoint = _normalize_endpoint(_pick("AZURE_OPENAI_ENDPOINT", ycfg, "endpoint"))
    azure_key = _pick("AZURE_OPENAI_API_KEY", ycfg, "azure_api_key")
    temperature = parse_float(
        os.getenv("NLQ_LLM_TEMPERATURE") or str(ycfg.get("temperature", "")),
        0.0,
        minimum=0.0,
    )
    max_tokens = parse_int(
        os.getenv("NLQ_LLM_MAX_TOKENS") or str(ycfg.get("max_tokens", "")),
        800,
        minimum=16,
    )
    if endpoint and azure_key:
        deployment = _pick("AZURE_OPENAI_DEPLOYMENT", ycfg, "deployment")
        if not deployment:
            raise BackendUnavailable("Set AZURE_OPENAI_DEPLOYMENT for Azure OpenAI.")
        return LlmCfg(
            api_key=azure_key,
            model=deployment,
            endpoint=endpoint,
            api_version=_pick(
                "AZURE_OPENAI_API_VERSION",
                ycfg,
                "api_version",
                _DEFAULT_AZURE_API_VERSION,
            ),
            use_azure=True,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    api_key = _pick("OPENAI_API_KEY", ycfg, "api_key")
    if not api_key:
        raise BackendUnavailable(
            "Missing LLM config. Set OPENAI_API_KEY, or AZURE_OPENAI_ENDPOINT with "
            "AZURE_OPENAI_API_KEY (or provide NLQ_LLM_CONFIG_PATH)."
        )
    return LlmCfg(
        api_key=api_key,
        model=_pick("OPENAI_MODEL", ycfg, "model", _DEFAULT_MODEL),
        endpoint="",
        api_version="",
        use_azure=False,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def build_client(cfg: LlmCfg) -> object:
    """Build the OpenAI client for a resolved config."""
    if cfg.use_azure:
        logger.info(
            "Using Azure Chat Completions at %s (api_version=%s)",
            cfg.endpoint,
            cfg.api_version,
        )
        return AzureOpenAI(
            api_key=cfg.api_key,
            azure_endpoint=cfg.endpoint,
            api_version=cfg.api_version,
        )
    logger.info("Using OpenAI Chat Completions model=%s", cfg.model)
    return OpenAI(api_key=cfg.api_key)


def _extract_text(resp: Any) -> str:
    try:
        return resp.choices[0].message.content or ""
    except (AttributeError, IndexError, TypeError):
        return ""


class OpenAIBackend:
    """Single request/response completion call against one client."""

    def __init__(self, cfg: LlmCfg, client: object | None = None) -> None:
        self.cfg = cfg
        self._client = client

    @classmethod
    def from_env(cls) -> "OpenAIBackend":
        """Build a backend from environment configuration."""
        return cls(load_llm_config())

    @property
    def client(self) -> object:
        """Lazily constructed OpenAI client."""
        if self._client is None:
            self._client = build_client(self.cfg)
        return self._client

    def complete(self, prompt: str) -> str:
        """Return the completion text for a prompt.

        :raises BackendUnavailable: On any client or transport failure.
        """
        try:
            resp = self.client.chat.completions.create(
                model=self.cfg.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.cfg.temperature,
                max_tokens=self.cfg.max_tokens,
            )
        except OpenAIError as exc:
            logger.warning("LLM request failed: %s", exc)
            raise BackendUnavailable(f"Failed to get response from language model: {exc}") from exc
        return _extract_text(resp)

    __call__ = complete


class UnavailableBackend:
    """Stand-in backend for when no credentials are configured."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def __call__(self, _prompt: str) -> str:
        raise BackendUnavailable(self.reason)


def backend_from_env() -> CompletionBackend:
    """Return a configured backend, or one that reports why none is available."""
    try:
        return OpenAIBackend.from_env()
    except BackendUnavailable as exc:
        logger.warning("LLM backend not configured: %s", exc)
        return UnavailableBackend(str(exc))
