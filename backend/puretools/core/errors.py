from __future__ import annotations

from enum import Enum


class CreditErrorCode(str, Enum):
    """
    Stable codes for every business-rule rejection in the credit subsystem.

    Services return these inside result objects; only the HTTP layer turns them
    into localized text (see puretools.core.messages).
    """

    INVALID_CODE = "INVALID_CODE"
    CODE_INACTIVE = "CODE_INACTIVE"
    CODE_EXPIRED = "CODE_EXPIRED"
    CODE_EXHAUSTED = "CODE_EXHAUSTED"
    ALREADY_USED = "ALREADY_USED"
    NOT_CREDITS_CODE = "NOT_CREDITS_CODE"
    MIN_PURCHASE_NOT_MET = "MIN_PURCHASE_NOT_MET"
    INVALID_DISCOUNT_TYPE = "INVALID_DISCOUNT_TYPE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    SELF_REFERRAL = "SELF_REFERRAL"
    ALREADY_REFERRED = "ALREADY_REFERRED"
    CODE_GENERATION_EXHAUSTED = "CODE_GENERATION_EXHAUSTED"
    UNKNOWN_USER = "UNKNOWN_USER"


class LedgerRejected(Exception):
    """Raised inside a unit of work to roll back a multi-row write when a ledger primitive refuses."""

    def __init__(self, code: CreditErrorCode | None):
        super().__init__(code.value if code else "ledger rejected")
        self.code = code
