from __future__ import annotations

from fastapi import HTTPException, status

from puretools.core.errors import CreditErrorCode
from puretools.core.messages import error_message

_STATUS_BY_CODE: dict[CreditErrorCode, int] = {
    CreditErrorCode.INSUFFICIENT_BALANCE: status.HTTP_402_PAYMENT_REQUIRED,
    CreditErrorCode.UNKNOWN_USER: status.HTTP_404_NOT_FOUND,
    CreditErrorCode.CODE_GENERATION_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def credit_error(
    code: CreditErrorCode,
    language: str | None = None,
    *,
    details: dict | None = None,
    **params: object,
) -> HTTPException:
    """HTTPException carrying a stable error code and its localized message."""
    detail: dict = {"error": code.value, "message": error_message(code, language, **params)}
    if details:
        detail["details"] = details
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(code, status.HTTP_400_BAD_REQUEST),
        detail=detail,
    )
