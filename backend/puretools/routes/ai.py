from __future__ import annotations

import base64
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from puretools.core.config import settings
from puretools.core.database import get_db
from puretools.core.errors import CreditErrorCode
from puretools.core.http_errors import credit_error
from puretools.dependencies.auth import get_current_user
from puretools.dependencies.rate_limit import require_user_rate_limit
from puretools.models.user import User
from puretools.schemas.ai import (
    EstimateIn,
    EstimateOut,
    ImageIn,
    ImageOut,
    SpeechIn,
    SpeechOut,
    SummarizeIn,
    SummarizeOut,
    TranscribeOut,
    TranslateIn,
    TranslateOut,
)
from puretools.services.ai_provider import AIProvider, AIProviderError, get_ai_provider
from puretools.services.ai_tools import Estimate, MeteredAIService, MeteredResult
from puretools.services.pricing import (
    OperationKind,
    count_words,
    estimate_audio_seconds,
    image_operation,
    speech_operation,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


def _ai_rate_limit(route_key: str):
    return Depends(require_user_rate_limit(route_key, limit=settings.RATE_LIMIT_AI_REQUESTS))


def _estimate_out(estimate: Estimate) -> EstimateOut:
    return EstimateOut(
        operation=estimate.operation.value,
        quantity=estimate.quantity,
        base_credits=estimate.price.base_cost,
        service_fee=estimate.price.service_fee,
        total_credits=estimate.price.total_cost,
        estimated_time_seconds=estimate.estimated_time_seconds,
        has_enough_credits=estimate.has_enough_credits,
    )


def _check_metered(metered: MeteredResult) -> None:
    if metered.error is CreditErrorCode.INSUFFICIENT_BALANCE:
        raise credit_error(
            CreditErrorCode.INSUFFICIENT_BALANCE,
            details={"required": metered.required, "balance": metered.new_balance},
            required=metered.required,
        )


def _charge_fields(metered: MeteredResult) -> dict:
    return {
        "credits_used": metered.credits_used,
        "new_balance": metered.new_balance,
        "billing_error": metered.billing_error.value if metered.billing_error else None,
    }


def _provider_failed(tool: str, exc: AIProviderError) -> HTTPException:
    logger.warning("AI provider call failed tool=%s: %s", tool, exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{tool} failed. Please try again.")


def _require_max_chars(text: str) -> None:
    if len(text) > settings.AI_MAX_INPUT_CHARS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Text exceeds maximum length of {settings.AI_MAX_INPUT_CHARS} characters",
        )


@router.post("/estimate", response_model=EstimateOut)
def estimate_operation(
    payload: EstimateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> EstimateOut:
    try:
        estimate = MeteredAIService(db).estimate(user_id=user.id, operation=payload.operation, quantity=payload.quantity)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _estimate_out(estimate)


@router.post("/translate", response_model=TranslateOut | EstimateOut, dependencies=[_ai_rate_limit("ai_translate")])
def translate(
    payload: TranslateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    provider: AIProvider = Depends(get_ai_provider),
):
    _require_max_chars(payload.text)
    words = count_words(payload.text)
    service = MeteredAIService(db)
    if payload.estimate_only:
        return _estimate_out(service.estimate(user_id=user.id, operation=OperationKind.TRANSLATE, quantity=words))

    try:
        metered = service.run(
            user_id=user.id,
            operation=OperationKind.TRANSLATE,
            quantity=words,
            tool_type="translate",
            description=f"Translation to {payload.target_language} ({words} words)",
            call=lambda: provider.translate(
                text=payload.text,
                target_language=payload.target_language,
                source_language=payload.source_language,
            ),
            input_size=words,
            output_size=lambda result: count_words(result.text),
            metadata={"target_language": payload.target_language, "source_language": payload.source_language},
        )
    except AIProviderError as exc:
        raise _provider_failed("Translation", exc) from exc
    _check_metered(metered)

    return TranslateOut(
        translation=metered.result.text,
        word_count=words,
        target_language=payload.target_language,
        **_charge_fields(metered),
    )


@router.post("/summarize", response_model=SummarizeOut | EstimateOut, dependencies=[_ai_rate_limit("ai_summarize")])
def summarize(
    payload: SummarizeIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    provider: AIProvider = Depends(get_ai_provider),
):
    _require_max_chars(payload.text)
    words = count_words(payload.text)
    service = MeteredAIService(db)
    if payload.estimate_only:
        return _estimate_out(service.estimate(user_id=user.id, operation=OperationKind.SUMMARIZE, quantity=words))

    try:
        metered = service.run(
            user_id=user.id,
            operation=OperationKind.SUMMARIZE,
            quantity=words,
            tool_type="summarize",
            description=f"Summary ({payload.length}, {words} words)",
            call=lambda: provider.summarize(
                text=payload.text,
                length=payload.length,
                style=payload.style,
                language=payload.language,
            ),
            input_size=words,
            output_size=lambda result: count_words(result.text),
            metadata={"length": payload.length, "style": payload.style},
        )
    except AIProviderError as exc:
        raise _provider_failed("Summarization", exc) from exc
    _check_metered(metered)

    summary = metered.result.text
    summary_words = count_words(summary)
    return SummarizeOut(
        summary=summary,
        original_word_count=words,
        summary_word_count=summary_words,
        compression_ratio=round((1 - summary_words / words) * 100) if words else 0,
        **_charge_fields(metered),
    )


@router.post("/speech", response_model=SpeechOut | EstimateOut, dependencies=[_ai_rate_limit("ai_speech")])
def text_to_speech(
    payload: SpeechIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    provider: AIProvider = Depends(get_ai_provider),
):
    characters = len(payload.text)
    operation = speech_operation(payload.model)
    service = MeteredAIService(db)
    if payload.estimate_only:
        return _estimate_out(service.estimate(user_id=user.id, operation=operation, quantity=characters))

    try:
        metered = service.run(
            user_id=user.id,
            operation=operation,
            quantity=characters,
            tool_type="text_to_speech",
            description=f"Text to speech ({payload.voice}, {characters} characters)",
            call=lambda: provider.speech(
                text=payload.text,
                voice=payload.voice,
                model=payload.model,
                speed=payload.speed,
                response_format=payload.response_format,
            ),
            input_size=characters,
            output_size=lambda result: len(result.audio),
            metadata={"voice": payload.voice, "model": payload.model, "format": payload.response_format},
        )
    except AIProviderError as exc:
        raise _provider_failed("Speech generation", exc) from exc
    _check_metered(metered)

    return SpeechOut(
        audio_base64=base64.b64encode(metered.result.audio).decode("ascii"),
        content_type=metered.result.content_type,
        character_count=characters,
        **_charge_fields(metered),
    )


@router.post("/images", response_model=ImageOut | EstimateOut, dependencies=[_ai_rate_limit("ai_images")])
def generate_image(
    payload: ImageIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    provider: AIProvider = Depends(get_ai_provider),
):
    operation = image_operation(payload.size, payload.quality)
    service = MeteredAIService(db)
    if payload.estimate_only:
        return _estimate_out(service.estimate(user_id=user.id, operation=operation, quantity=1))

    try:
        metered = service.run(
            user_id=user.id,
            operation=operation,
            quantity=1,
            tool_type="generate_image",
            description=f"Image generation: {payload.prompt[:50]}",
            call=lambda: provider.generate_image(
                prompt=payload.prompt,
                size=payload.size,
                quality=payload.quality,
                style=payload.style,
            ),
            input_size=len(payload.prompt),
            metadata={
                "prompt": payload.prompt[:200],
                "size": payload.size,
                "quality": payload.quality,
                "style": payload.style,
            },
        )
    except AIProviderError as exc:
        raise _provider_failed("Image generation", exc) from exc
    _check_metered(metered)

    return ImageOut(
        image_url=metered.result.url,
        revised_prompt=metered.result.revised_prompt,
        size=payload.size,
        quality=payload.quality,
        style=payload.style,
        **_charge_fields(metered),
    )


@router.post("/transcribe", response_model=TranscribeOut | EstimateOut, dependencies=[_ai_rate_limit("ai_transcribe")])
def transcribe(
    file: UploadFile = File(...),
    language: str = Form("auto"),
    estimate_only: bool = Form(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    provider: AIProvider = Depends(get_ai_provider),
):
    # One byte past the limit is enough to reject without buffering the whole upload.
    content = file.file.read(settings.AI_MAX_AUDIO_BYTES + 1)
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Audio file is required")
    if len(content) > settings.AI_MAX_AUDIO_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds {settings.AI_MAX_AUDIO_BYTES // (1024 * 1024)}MB limit",
        )

    estimated_seconds = estimate_audio_seconds(len(content))
    service = MeteredAIService(db)
    if estimate_only:
        return _estimate_out(
            service.estimate(user_id=user.id, operation=OperationKind.TRANSCRIBE, quantity=estimated_seconds)
        )

    filename = file.filename or "audio"
    try:
        metered = service.run(
            user_id=user.id,
            operation=OperationKind.TRANSCRIBE,
            quantity=estimated_seconds,
            tool_type="transcribe",
            description=f"Transcription: {filename[:80]}",
            call=lambda: provider.transcribe(filename=filename, content=content, language=language),
            input_size=len(content),
            output_size=lambda result: count_words(result.text),
            metadata={"filename": filename[:200], "language": language, "estimated_seconds": estimated_seconds},
            actual_quantity=lambda result: (
                int(round(result.duration_seconds)) if result.duration_seconds is not None else None
            ),
        )
    except AIProviderError as exc:
        raise _provider_failed("Transcription", exc) from exc
    _check_metered(metered)

    result = metered.result
    return TranscribeOut(
        text=result.text,
        duration_seconds=result.duration_seconds if result.duration_seconds is not None else float(estimated_seconds),
        language=result.language,
        segments=result.segments,
        **_charge_fields(metered),
    )
