from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from puretools.services.pricing import OperationKind

ImageSize = Literal["1024x1024", "1792x1024", "1024x1792"]
SpeechVoice = Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"]


class EstimateIn(BaseModel):
    operation: OperationKind
    quantity: int = Field(ge=0)


class EstimateOut(BaseModel):
    operation: str
    quantity: int
    base_credits: int
    service_fee: int
    total_credits: int
    estimated_time_seconds: int
    has_enough_credits: bool


class ChargeOut(BaseModel):
    credits_used: int
    new_balance: int
    billing_error: str | None = None


class TranslateIn(BaseModel):
    text: str = Field(min_length=1)
    target_language: str = Field(min_length=2, max_length=32)
    source_language: str | None = None
    estimate_only: bool = False

    @field_validator("text")
    @staticmethod
    def _validate_text(value: str) -> str:
        if not value.strip():
            raise ValueError("text is required")
        return value


class TranslateOut(ChargeOut):
    translation: str
    word_count: int
    target_language: str


class SummarizeIn(BaseModel):
    text: str = Field(min_length=100)
    length: Literal["short", "medium", "long"] = "medium"
    style: Literal["bullet", "paragraph", "executive"] = "paragraph"
    language: str | None = None
    estimate_only: bool = False


class SummarizeOut(ChargeOut):
    summary: str
    original_word_count: int
    summary_word_count: int
    compression_ratio: int


class SpeechIn(BaseModel):
    text: str = Field(min_length=1, max_length=4096)
    voice: SpeechVoice = "alloy"
    model: Literal["tts-1", "tts-1-hd"] = "tts-1"
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    response_format: Literal["mp3", "opus", "aac", "flac"] = "mp3"
    estimate_only: bool = False


class SpeechOut(ChargeOut):
    audio_base64: str
    content_type: str
    character_count: int


class ImageIn(BaseModel):
    prompt: str = Field(min_length=10, max_length=4000)
    size: ImageSize = "1024x1024"
    quality: Literal["standard", "hd"] = "standard"
    style: Literal["vivid", "natural"] = "vivid"
    estimate_only: bool = False


class ImageOut(ChargeOut):
    image_url: str
    revised_prompt: str | None = None
    size: str
    quality: str
    style: str


class TranscribeOut(ChargeOut):
    text: str
    duration_seconds: float | None = None
    language: str | None = None
    segments: list[dict[str, Any]] = Field(default_factory=list)
