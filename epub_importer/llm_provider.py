from __future__ import annotations

import json
from dataclasses import dataclass
from time import monotonic
from typing import Any
from urllib import error, request

from epub_importer.importer_config import ImporterConfig

OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"
GEMINI_GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
RESPONSE_READ_CHUNK_BYTES = 64 * 1024


class LessonGenerationError(RuntimeError):
    """Raised when a provider cannot turn a fragment into a structured lesson."""


@dataclass(frozen=True)
class LlmJsonResult:
    status: str
    raw_response: str | None
    warnings: list[str]


def _collect_gemini_text(response_payload: dict[str, Any]) -> str | None:
    candidates = response_payload.get("candidates") or []
    if not candidates:
        return None

    parts = (candidates[0].get("content") or {}).get("parts") or []
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())

    if extracted:
        return "\n".join(extracted)
    return None


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    # urlopen's timeout bounds each socket operation; the deadline bounds the whole call.
    deadline = monotonic() + timeout
    chunks: list[bytes] = []
    with request.urlopen(req, timeout=timeout) as response:
        while True:
            chunk = response.read1(RESPONSE_READ_CHUNK_BYTES)
            if not chunk:
                break
            chunks.append(chunk)
            if monotonic() > deadline:
                raise TimeoutError(f"Response was not complete within {timeout:g} seconds.")
    return json.loads(b"".join(chunks).decode("utf-8"))


def _http_error_warning(provider_name: str, exc: error.HTTPError) -> str:
    response_excerpt = ""
    try:
        response_body = exc.read().decode("utf-8", errors="replace").strip()
    except Exception:
        response_body = ""

    if response_body:
        try:
            parsed = json.loads(response_body)
            if isinstance(parsed, dict):
                error_payload = parsed.get("error")
                if isinstance(error_payload, dict):
                    message = error_payload.get("message")
                    if isinstance(message, str) and message.strip():
                        response_excerpt = message.strip()
        except json.JSONDecodeError:
            response_excerpt = response_body[:200]

    if response_excerpt:
        return f"{provider_name} request failed with HTTP {exc.code}: {response_excerpt}"

    return f"{provider_name} request failed with HTTP {exc.code}."


def _transport_error_warning(provider_name: str, exc: Exception, timeout: float) -> str:
    reason = exc.reason if isinstance(exc, error.URLError) else exc
    if isinstance(reason, TimeoutError):
        return f"{provider_name} request timed out after {timeout:g} seconds."
    return f"{provider_name} request failed before receiving a response."


def _request_failure(provider_name: str, exc: Exception, timeout: float) -> LlmJsonResult:
    if isinstance(exc, error.HTTPError):
        warning = _http_error_warning(provider_name, exc)
    elif isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        warning = f"{provider_name} returned a non-JSON response body."
    else:
        warning = _transport_error_warning(provider_name, exc, timeout)
    return LlmJsonResult(status="error", raw_response=None, warnings=[warning])


def _collect_openai_text(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []

    collected: list[str] = []
    for part in content:
        if not isinstance(part, dict):
            continue

        direct_text = part.get("text")
        if isinstance(direct_text, str) and direct_text.strip():
            collected.append(direct_text.strip())
            continue

        value = part.get("value")
        if isinstance(value, str) and value.strip():
            collected.append(value.strip())

    return collected


def _extract_openai_text(response_payload: dict[str, Any]) -> str | None:
    output_text = response_payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    output = response_payload.get("output")
    if isinstance(output, list):
        extracted: list[str] = []
        for item in output:
            if not isinstance(item, dict):
                continue
            extracted.extend(_collect_openai_text(item.get("content")))

        if extracted:
            return "\n".join(extracted)

    return None


def _lesson_prompt(fragment_text: str, lesson_title: str) -> str:
    return (
        "Extract vocabulary as JSON. "
        "Return a single JSON object describing a language-learning lesson for the text below.\n\n"
        f"TITLE: {lesson_title}\n\n"
        f"TEXT:\n{fragment_text}"
    )


def generate_lesson_with_openai(
    api_key: str,
    model: str,
    fragment_text: str,
    lesson_title: str,
    *,
    max_output_tokens: int = 4000,
    timeout: float = 65.0,
) -> LlmJsonResult:
    try:
        payload = {
            "model": model,
            "input": _lesson_prompt(fragment_text, lesson_title),
            "max_output_tokens": max_output_tokens,
            "text": {"format": {"type": "json_object"}},
        }
        response_payload = _post_json(
            OPENAI_RESPONSES_URL,
            payload,
            {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            timeout,
        )
    except Exception as exc:
        return _request_failure("OpenAI", exc, timeout)

    extracted_text = _extract_openai_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    warning = "OpenAI response did not contain extractable text content."
    return LlmJsonResult(status="error", raw_response=json.dumps(response_payload), warnings=[warning])


def generate_lesson_with_gemini(
    api_key: str,
    model: str,
    fragment_text: str,
    lesson_title: str,
    *,
    max_output_tokens: int = 4000,
    timeout: float = 65.0,
) -> LlmJsonResult:
    endpoint = GEMINI_GENERATE_URL.format(model=model, api_key=api_key)
    try:
        payload = {
            "contents": [{"parts": [{"text": _lesson_prompt(fragment_text, lesson_title)}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "maxOutputTokens": max_output_tokens,
            },
        }
        response_payload = _post_json(
            endpoint,
            payload,
            {"Content-Type": "application/json"},
            timeout,
        )
    except Exception as exc:
        return _request_failure("Gemini", exc, timeout)

    extracted_text = _collect_gemini_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    warning = "Gemini response did not contain text content."
    return LlmJsonResult(status="error", raw_response=json.dumps(response_payload), warnings=[warning])


def parse_lesson_payload(result: LlmJsonResult, provider_name: str) -> Any:
    if result.status != "success" or not result.raw_response:
        message = "; ".join(result.warnings) or f"{provider_name} request failed."
        raise LessonGenerationError(message)

    try:
        return json.loads(result.raw_response)
    except json.JSONDecodeError as exc:
        raise LessonGenerationError(f"{provider_name} returned text that is not valid JSON: {exc}") from exc


@dataclass(frozen=True)
class LlmLessonGenerator:
    """Callable `(fragment_text, lesson_title) -> lesson` bound to one provider configuration."""

    config: ImporterConfig

    @property
    def provider_name(self) -> str:
        return "Gemini" if self.config.provider == "gemini" else "OpenAI"

    def __call__(self, fragment_text: str, lesson_title: str) -> Any:
        api_key = self.config.api_key
        if not api_key:
            raise LessonGenerationError(f"{self.provider_name} API key is not configured.")

        generate = generate_lesson_with_gemini if self.config.provider == "gemini" else generate_lesson_with_openai
        result = generate(
            api_key,
            self.config.model,
            fragment_text,
            lesson_title,
            max_output_tokens=self.config.max_output_tokens,
            timeout=self.config.request_timeout_seconds,
        )
        return parse_lesson_payload(result, self.provider_name)
