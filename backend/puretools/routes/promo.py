from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from puretools.core.database import get_db
from puretools.core.http_errors import credit_error
from puretools.core.messages import success_message
from puretools.dependencies.auth import get_current_user
from puretools.dependencies.rate_limit import require_user_rate_limit
from puretools.models.user import User
from puretools.schemas.promo import PromoCodeIn, PromoCodeInfoOut, PromoRedeemOut, PromoValidateOut
from puretools.models.promo import PromoCodeType
from puretools.services.promo import PromoService, calculate_discount

router = APIRouter(prefix="/promo", tags=["promo"])


@router.post(
    "/validate",
    response_model=PromoValidateOut,
    dependencies=[Depends(require_user_rate_limit("promo_validate"))],
)
def validate_promo_code(
    payload: PromoCodeIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PromoValidateOut:
    validation = PromoService(db).validate(payload.code, user.id)
    if not validation.valid or validation.promo_code is None:
        raise credit_error(validation.error, payload.language)

    promo = validation.promo_code
    discount_amount: int | None = None
    if payload.purchase_amount is not None and promo.type != PromoCodeType.CREDITS.value:
        discount = calculate_discount(promo, payload.purchase_amount)
        if not discount.valid:
            raise credit_error(discount.error, payload.language)
        discount_amount = discount.discount_amount

    return PromoValidateOut(
        valid=True,
        promo_code=PromoCodeInfoOut(
            code=promo.code,
            type=promo.type,
            value=promo.value,
            description=promo.description,
        ),
        discount_amount=discount_amount,
    )


@router.post(
    "/redeem",
    response_model=PromoRedeemOut,
    dependencies=[Depends(require_user_rate_limit("promo_redeem"))],
)
def redeem_promo_code(
    payload: PromoCodeIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PromoRedeemOut:
    result = PromoService(db).redeem_credits(payload.code, user.id)
    if not result.success:
        raise credit_error(result.error, payload.language)

    return PromoRedeemOut(
        success=True,
        credits=result.credits,
        new_balance=result.new_balance or 0,
        message=success_message("promo_redeemed", payload.language, credits=result.credits),
    )
