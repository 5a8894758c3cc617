"""
Localized messages for credit error codes.

Pure lookup tables, one per locale. Adding a language means adding a table
with an entry per code; missing entries fall back to English, then to the code.
"""
from __future__ import annotations

from puretools.core.errors import CreditErrorCode

DEFAULT_LANGUAGE = "en"

ERROR_MESSAGES: dict[str, dict[CreditErrorCode, str]] = {
    "en": {
        CreditErrorCode.INVALID_CODE: "Invalid promo code",
        CreditErrorCode.CODE_INACTIVE: "This promo code is no longer active",
        CreditErrorCode.CODE_EXPIRED: "This promo code has expired",
        CreditErrorCode.CODE_EXHAUSTED: "This promo code has reached its usage limit",
        CreditErrorCode.ALREADY_USED: "You have already used this promo code",
        CreditErrorCode.NOT_CREDITS_CODE: "This code cannot be redeemed for credits",
        CreditErrorCode.MIN_PURCHASE_NOT_MET: "Minimum purchase amount not met",
        CreditErrorCode.INVALID_DISCOUNT_TYPE: "Invalid discount type",
        CreditErrorCode.INSUFFICIENT_BALANCE: "Insufficient credits. {required} credits are required.",
        CreditErrorCode.INVALID_AMOUNT: "Credit amount must be greater than zero",
        CreditErrorCode.INVALID_SIGNATURE: "Invalid signature",
        CreditErrorCode.SELF_REFERRAL: "You cannot refer yourself",
        CreditErrorCode.ALREADY_REFERRED: "This referral has already been applied",
        CreditErrorCode.CODE_GENERATION_EXHAUSTED: "Could not generate a referral code, please try again",
        CreditErrorCode.UNKNOWN_USER: "User not found",
    },
    "de": {
        CreditErrorCode.INVALID_CODE: "Ungültiger Promo-Code",
        CreditErrorCode.CODE_INACTIVE: "Dieser Promo-Code ist nicht mehr aktiv",
        CreditErrorCode.CODE_EXPIRED: "Dieser Promo-Code ist abgelaufen",
        CreditErrorCode.CODE_EXHAUSTED: "Dieser Promo-Code hat sein Nutzungslimit erreicht",
        CreditErrorCode.ALREADY_USED: "Du hast diesen Promo-Code bereits verwendet",
        CreditErrorCode.NOT_CREDITS_CODE: "Dieser Code kann nicht für Credits eingelöst werden",
        CreditErrorCode.MIN_PURCHASE_NOT_MET: "Mindestbestellwert nicht erreicht",
        CreditErrorCode.INVALID_DISCOUNT_TYPE: "Ungültiger Rabatttyp",
        CreditErrorCode.INSUFFICIENT_BALANCE: "Nicht genügend Credits. Benötigt werden {required} Credits.",
        CreditErrorCode.INVALID_AMOUNT: "Die Anzahl der Credits muss größer als null sein",
        CreditErrorCode.INVALID_SIGNATURE: "Ungültige Signatur",
        CreditErrorCode.SELF_REFERRAL: "Du kannst dich nicht selbst empfehlen",
        CreditErrorCode.ALREADY_REFERRED: "Diese Empfehlung wurde bereits angewendet",
        CreditErrorCode.CODE_GENERATION_EXHAUSTED: "Empfehlungscode konnte nicht erstellt werden, bitte versuche es erneut",
        CreditErrorCode.UNKNOWN_USER: "Benutzer nicht gefunden",
    },
}

SUCCESS_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "promo_redeemed": "{credits} credits have been added to your account!",
    },
    "de": {
        "promo_redeemed": "{credits} Credits wurden deinem Konto gutgeschrieben!",
    },
}


def normalize_language(language: str | None) -> str:
    normalized = (language or "").strip().lower()[:2]
    return normalized if normalized in ERROR_MESSAGES else DEFAULT_LANGUAGE


def error_message(code: CreditErrorCode | str, language: str | None = None, **params: object) -> str:
    try:
        key = CreditErrorCode(code)
    except ValueError:
        return str(code)
    lang = normalize_language(language)
    template = ERROR_MESSAGES[lang].get(key) or ERROR_MESSAGES[DEFAULT_LANGUAGE].get(key) or key.value
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template


def success_message(key: str, language: str | None = None, **params: object) -> str:
    lang = normalize_language(language)
    template = SUCCESS_MESSAGES[lang].get(key) or SUCCESS_MESSAGES[DEFAULT_LANGUAGE][key]
    return template.format(**params)
