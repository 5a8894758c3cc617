from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


class OperationKind(str, Enum):
    TRANSLATE = "translate"
    SUMMARIZE = "summarize"
    TRANSCRIBE = "transcribe"
    TEXT_TO_SPEECH = "text_to_speech"
    TEXT_TO_SPEECH_HD = "text_to_speech_hd"
    IMAGE_STANDARD = "image_standard"
    IMAGE_HD = "image_hd"
    IMAGE_HD_WIDE = "image_hd_wide"
    VIDEO = "video"


@dataclass(frozen=True)
class RateCard:
    rate: Decimal  # credits per `unit` of quantity
    unit: int
    min_credits: int = 0


@dataclass(frozen=True)
class Price:
    base_cost: int
    service_fee: int
    total_cost: int


SERVICE_FEE_PERCENT = Decimal("10")

# Quantity is words, characters, audio seconds or images depending on the operation.
RATE_CARDS: dict[OperationKind, RateCard] = {
    OperationKind.TRANSLATE: RateCard(rate=Decimal("0.1"), unit=1000, min_credits=1),
    OperationKind.SUMMARIZE: RateCard(rate=Decimal("0.3"), unit=1000, min_credits=1),
    OperationKind.TRANSCRIBE: RateCard(rate=Decimal("1"), unit=60, min_credits=2),
    OperationKind.TEXT_TO_SPEECH: RateCard(rate=Decimal("1.5"), unit=1000, min_credits=1),
    OperationKind.TEXT_TO_SPEECH_HD: RateCard(rate=Decimal("3"), unit=1000, min_credits=1),
    OperationKind.IMAGE_STANDARD: RateCard(rate=Decimal("5"), unit=1),
    OperationKind.IMAGE_HD: RateCard(rate=Decimal("8"), unit=1),
    OperationKind.IMAGE_HD_WIDE: RateCard(rate=Decimal("10"), unit=1),
}

# (max seconds, credits); requests are billed at the first tier that covers them.
VIDEO_TIERS: tuple[tuple[int, int], ...] = ((5, 25), (10, 40), (15, 55), (20, 70))

AUDIO_BYTES_PER_SECOND = 16 * 1024  # ~128 kbps

_WORD_SPLIT = re.compile(r"\s+")


def _service_fee(base_cost: int) -> int:
    fee = Decimal(base_cost) * SERVICE_FEE_PERCENT / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _video_base_cost(seconds: int) -> int:
    for max_seconds, credits in VIDEO_TIERS:
        if seconds <= max_seconds:
            return credits
    raise ValueError(f"Video duration {seconds}s exceeds the longest tier ({VIDEO_TIERS[-1][0]}s)")


def price(operation: OperationKind | str, quantity: int | float) -> Price:
    """
    Price one AI operation in whole credits.

    base_cost = max(min_credits, ceil(quantity / unit * rate)), fee is 10% of the
    base rounded half-up, total = base + fee. Non-positive quantities are free.
    Estimates and charges both go through here so they can never disagree.
    """
    kind = OperationKind(operation)
    if quantity is None or quantity <= 0:
        return Price(base_cost=0, service_fee=0, total_cost=0)

    if kind is OperationKind.VIDEO:
        base_cost = _video_base_cost(math.ceil(quantity))
    else:
        card = RATE_CARDS[kind]
        raw = Decimal(str(quantity)) / Decimal(card.unit) * card.rate
        base_cost = max(card.min_credits, math.ceil(raw))

    fee = _service_fee(base_cost)
    return Price(base_cost=base_cost, service_fee=fee, total_cost=base_cost + fee)


def image_operation(size: str, quality: str) -> OperationKind:
    if quality == "standard":
        return OperationKind.IMAGE_STANDARD
    if size == "1024x1024":
        return OperationKind.IMAGE_HD
    return OperationKind.IMAGE_HD_WIDE


def speech_operation(model: str) -> OperationKind:
    return OperationKind.TEXT_TO_SPEECH_HD if model.endswith("-hd") else OperationKind.TEXT_TO_SPEECH


def count_words(text: str | None) -> int:
    stripped = (text or "").strip()
    if not stripped:
        return 0
    return len(_WORD_SPLIT.split(stripped))


def estimate_audio_seconds(file_size: int) -> int:
    if file_size <= 0:
        return 0
    return math.ceil(file_size / AUDIO_BYTES_PER_SECOND)


def estimated_time_seconds(operation: OperationKind | str, quantity: int) -> int:
    """Rough wall-clock guess shown next to an estimate."""
    kind = OperationKind(operation)
    if quantity <= 0:
        return 0
    if kind is OperationKind.TRANSLATE:
        return math.ceil(quantity / 500) * 2
    if kind is OperationKind.SUMMARIZE:
        return math.ceil(quantity / 1000) * 3
    if kind is OperationKind.TRANSCRIBE:
        return math.ceil(quantity / 10)
    if kind in (OperationKind.TEXT_TO_SPEECH, OperationKind.TEXT_TO_SPEECH_HD):
        return math.ceil(quantity / 1000) * 2
    if kind is OperationKind.VIDEO:
        return 60
    return 15
