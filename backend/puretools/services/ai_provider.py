from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, TypeVar

from openai import OpenAI, OpenAIError

from puretools.core.config import settings

T = TypeVar("T")

SUMMARY_TARGET_PERCENT = {"short": 10, "medium": 25, "long": 40}
SUMMARY_STYLES = {
    "bullet": "Format the summary as bullet points. Each point should capture a key idea or fact.",
    "paragraph": "Write the summary as flowing paragraphs that read naturally.",
    "executive": (
        "Write an executive summary suitable for business contexts. Start with the main conclusion, "
        "then key findings, and end with recommendations if applicable."
    ),
}


@dataclass(frozen=True)
class TextResult:
    text: str
    model: str


@dataclass(frozen=True)
class SpeechResult:
    audio: bytes
    content_type: str
    model: str


@dataclass(frozen=True)
class ImageResult:
    url: str
    revised_prompt: str | None
    model: str


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    duration_seconds: float | None
    language: str | None
    segments: list[dict[str, Any]] = field(default_factory=list)


class AIProviderError(RuntimeError):
    pass


class AIProvider(Protocol):
    def translate(self, *, text: str, target_language: str, source_language: str | None = None) -> TextResult:
        ...

    def summarize(self, *, text: str, length: str, style: str, language: str | None = None) -> TextResult:
        ...

    def speech(self, *, text: str, voice: str, model: str, speed: float, response_format: str) -> SpeechResult:
        ...

    def generate_image(self, *, prompt: str, size: str, quality: str, style: str) -> ImageResult:
        ...

    def transcribe(self, *, filename: str, content: bytes, language: str | None = None) -> TranscriptionResult:
        ...


_AUDIO_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "opus": "audio/opus",
    "aac": "audio/aac",
    "flac": "audio/flac",
}


class OpenAIProvider:
    """
    Thin wrapper around the OpenAI SDK so routes and billing can be unit-tested
    against a fake provider.
    """

    def __init__(self, *, api_key: str | None = None, client: Any | None = None) -> None:
        if client is None:
            key = api_key or settings.OPENAI_API_KEY
            if not key:
                raise AIProviderError("OPENAI_API_KEY is not configured")
            client = OpenAI(api_key=key)
        self._client = client
        self.model = settings.OPENAI_MODEL
        self.max_retries = settings.AI_OPENAI_MAX_RETRIES

    def translate(self, *, text: str, target_language: str, source_language: str | None = None) -> TextResult:
        source = f"from {source_language} " if source_language and source_language != "auto" else ""
        system = (
            f"You are a professional translator. Translate the user's text {source}into {target_language}. "
            "Preserve formatting, line breaks and tone. Reply with the translation only."
        )
        return self._complete(system=system, user=text)

    def summarize(self, *, text: str, length: str, style: str, language: str | None = None) -> TextResult:
        percent = SUMMARY_TARGET_PERCENT.get(length, SUMMARY_TARGET_PERCENT["medium"])
        language_instruction = (
            f"Write the summary in {language}."
            if language
            else "Write the summary in the same language as the original text."
        )
        system = (
            f"You are an expert summarizer. Create a {length} summary of roughly {percent}% of the original length. "
            f"{SUMMARY_STYLES.get(style, SUMMARY_STYLES['paragraph'])} {language_instruction} "
            "Do not add information that is not in the original and do not add meta-commentary."
        )
        return self._complete(system=system, user=text, temperature=0.3)

    def speech(self, *, text: str, voice: str, model: str, speed: float, response_format: str) -> SpeechResult:
        response = self._with_retries(
            lambda: self._client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                speed=speed,
                response_format=response_format,
            )
        )
        return SpeechResult(
            audio=response.content,
            content_type=_AUDIO_CONTENT_TYPES.get(response_format, "application/octet-stream"),
            model=model,
        )

    def generate_image(self, *, prompt: str, size: str, quality: str, style: str) -> ImageResult:
        model = settings.OPENAI_IMAGE_MODEL
        response = self._with_retries(
            lambda: self._client.images.generate(
                model=model,
                prompt=prompt,
                n=1,
                size=size,
                quality=quality,
                style=style,
                response_format="url",
            )
        )
        data = response.data or []
        if not data or not data[0].url:
            raise AIProviderError("Image generation returned no image")
        return ImageResult(url=data[0].url, revised_prompt=data[0].revised_prompt, model=model)

    def transcribe(self, *, filename: str, content: bytes, language: str | None = None) -> TranscriptionResult:
        kwargs: dict[str, Any] = {
            "model": settings.OPENAI_TRANSCRIBE_MODEL,
            "file": (filename, content),
            "response_format": "verbose_json",
        }
        if language and language != "auto":
            kwargs["language"] = language
        response = self._with_retries(lambda: self._client.audio.transcriptions.create(**kwargs))
        segments = [
            {"start": seg.start, "end": seg.end, "text": seg.text}
            for seg in (getattr(response, "segments", None) or [])
        ]
        duration = getattr(response, "duration", None)
        return TranscriptionResult(
            text=response.text,
            duration_seconds=float(duration) if duration is not None else None,
            language=getattr(response, "language", None) or language,
            segments=segments,
        )

    def _complete(self, *, system: str, user: str, temperature: float = 0.2) -> TextResult:
        response = self._with_retries(
            lambda: self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
            )
        )
        content = response.choices[0].message.content or ""
        return TextResult(text=content.strip(), model=response.model or self.model)

    def _with_retries(self, call: Callable[[], T]) -> T:
        for attempt in range(1, self.max_retries + 1):
            try:
                return call()
            except OpenAIError as exc:
                if attempt == self.max_retries or not self._is_retryable(exc):
                    raise AIProviderError(str(exc)) from exc
                backoff = min(0.5 * (2 ** (attempt - 1)), 5.0)
                time.sleep(backoff + random.uniform(0, 0.25))
        raise AIProviderError("OpenAI call was not attempted")

    def _is_retryable(self, exc: OpenAIError) -> bool:
        status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
        if isinstance(status, int):
            return status >= 500 or status in {408, 429}
        message = str(exc).lower()
        return "timeout" in message or "temporarily unavailable" in message


def get_ai_provider() -> AIProvider:
    """FastAPI dependency; tests override it with a fake provider."""
    return OpenAIProvider()
