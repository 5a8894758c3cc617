from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from puretools.core.database import get_db
from puretools.core.errors import CreditErrorCode
from puretools.core.http_errors import credit_error
from puretools.core.packages import get_package
from puretools.dependencies.auth import get_current_user
from puretools.dependencies.rate_limit import require_user_rate_limit
from puretools.models.user import User
from puretools.schemas.billing import StripeCheckoutCreate, StripeCheckoutOut
from puretools.services.promo import PromoService, calculate_discount
from puretools.services.stripe import (
    CheckoutDiscount,
    StripeService,
    StripeServiceError,
    StripeWebhookError,
    parse_raw_payload,
)

router = APIRouter(prefix="/billing/stripe", tags=["billing"])


@router.post(
    "/checkout",
    response_model=StripeCheckoutOut,
    dependencies=[Depends(require_user_rate_limit("stripe_checkout"))],
)
def create_checkout_session(
    payload: StripeCheckoutCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> StripeCheckoutOut:
    package = get_package(payload.package_id)
    if not package:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid package")

    discount: CheckoutDiscount | None = None
    if payload.promo_code:
        validation = PromoService(db).validate(payload.promo_code, user.id)
        if not validation.valid or validation.promo_code is None:
            raise credit_error(validation.error, payload.language)
        computed = calculate_discount(validation.promo_code, package.price)
        if not computed.valid:
            raise credit_error(computed.error, payload.language)
        discount = CheckoutDiscount(promo_code=validation.promo_code, amount=computed.discount_amount)

    service = StripeService(db)
    success_url, cancel_url = service.checkout_urls(payload.language)
    try:
        session = service.create_checkout_session(
            user,
            package=package,
            success_url=success_url,
            cancel_url=cancel_url,
            discount=discount,
        )
    except StripeServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    discount_amount = discount.amount if discount else 0
    return StripeCheckoutOut(
        checkout_session_id=session.get("id"),
        checkout_url=session.get("url"),
        package_id=package.id,
        credits=package.credits,
        currency=package.currency,
        amount=package.price - discount_amount,
        discount_amount=discount_amount,
    )


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    service = StripeService(db)
    try:
        event = service.parse_event(payload, signature)
    except StripeWebhookError as exc:
        raise credit_error(CreditErrorCode.INVALID_SIGNATURE, details={"reason": str(exc)}) from exc

    try:
        credits_applied = service.process_event(event, parse_raw_payload(payload))
    except StripeServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return {"received": True, "credits_applied": credits_applied}
