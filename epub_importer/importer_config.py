from __future__ import annotations

import os
from dataclasses import dataclass, replace

DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
DEFAULT_PROVIDER = "chatgpt"
DEFAULT_TARGET_WORDS = 1200
DEFAULT_MAX_FRAGMENTS = 3
DEFAULT_START_FROM = 1
DEFAULT_REQUEST_TIMEOUT_SECONDS = 65.0
DEFAULT_MIN_TEXT_CHARS = 20
DEFAULT_MAX_OUTPUT_TOKENS = 4000
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"

SUPPORTED_PROVIDERS = ("chatgpt", "openai", "gemini")


@dataclass(frozen=True)
class ImporterConfig:
    """Explicit settings for one importer process, passed into the pipeline and generator."""

    provider: str = DEFAULT_PROVIDER
    openai_api_key: str | None = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    gemini_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    target_words: int = DEFAULT_TARGET_WORDS
    max_fragments: int = DEFAULT_MAX_FRAGMENTS
    start_from: int = DEFAULT_START_FROM
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    min_text_chars: int = DEFAULT_MIN_TEXT_CHARS
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS

    def with_overrides(self, *, provider: str | None = None, api_key: str | None = None) -> "ImporterConfig":
        selected = normalize_provider(provider) if provider else self.provider
        key = (api_key or "").strip() or None
        if key is None:
            return replace(self, provider=selected)
        if selected == "gemini":
            return replace(self, provider=selected, gemini_api_key=key)
        return replace(self, provider=selected, openai_api_key=key)

    @property
    def api_key(self) -> str | None:
        if self.provider == "gemini":
            return self.gemini_api_key
        return self.openai_api_key

    @property
    def model(self) -> str:
        if self.provider == "gemini":
            return self.gemini_model
        return self.openai_model


def normalize_provider(value: str | None) -> str:
    provider = (value or DEFAULT_PROVIDER).strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unknown provider '{provider}'. "
            f"Available providers: {', '.join(SUPPORTED_PROVIDERS)}."
        )
    return provider


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if value < minimum:
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


def _env_str(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def load_importer_config() -> ImporterConfig:
    try:
        provider = normalize_provider(os.getenv("IMPORTER_LLM_PROVIDER"))
    except ValueError:
        provider = DEFAULT_PROVIDER

    return ImporterConfig(
        provider=provider,
        openai_api_key=_env_str("OPENAI_API_KEY"),
        openai_model=_env_str("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        gemini_api_key=_env_str("GEMINI_API_KEY"),
        gemini_model=_env_str("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
        target_words=_env_int("IMPORTER_TARGET_WORDS", DEFAULT_TARGET_WORDS),
        max_fragments=_env_int("IMPORTER_MAX_FRAGMENTS", DEFAULT_MAX_FRAGMENTS),
        start_from=_env_int("IMPORTER_START_FROM", DEFAULT_START_FROM),
        request_timeout_seconds=_env_float("IMPORTER_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        min_text_chars=_env_int("IMPORTER_MIN_TEXT_CHARS", DEFAULT_MIN_TEXT_CHARS, minimum=0),
        max_output_tokens=_env_int("IMPORTER_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
    )


def load_cors_allowed_origins() -> list[str]:
    return [
        origin.strip()
        for origin in os.getenv("IMPORTER_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ]
