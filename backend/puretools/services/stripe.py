from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from puretools.core.config import settings
from puretools.core.database import unit_of_work
from puretools.core.packages import CreditPackage, get_package
from puretools.models.credit import TransactionType
from puretools.models.promo import PromoCode
from puretools.models.stripe_event import StripeEvent, StripeEventStatus
from puretools.models.user import User
from puretools.services.credits import CreditsService
from puretools.services.promo import PromoService

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 500


class StripeServiceError(Exception):
    """Base error for Stripe service operations."""


class StripeWebhookError(StripeServiceError):
    """Raised when a webhook payload cannot be verified."""


@dataclass(frozen=True)
class CheckoutDiscount:
    promo_code: PromoCode
    amount: int


def session_idempotency_key(session_id: str) -> str:
    return f"stripe:{session_id}"


class StripeService:
    """
    Stripe integration facade. All direct Stripe SDK calls live here.

    Responsibilities:
    - Manage customers tied to application users
    - Create checkout sessions for credit packages
    - Persist webhook payloads for auditing
    - Convert paid checkout sessions into PURCHASE transactions exactly once
    """

    def __init__(self, db: Session, stripe_client: Any | None = None):
        self.db = db
        self.currency = settings.STRIPE_DEFAULT_CURRENCY or "eur"
        self.stripe = stripe_client or stripe
        if settings.STRIPE_SECRET_KEY:
            self.stripe.api_key = settings.STRIPE_SECRET_KEY

    # ------------------------------------------------------------------
    # Checkout creation
    # ------------------------------------------------------------------
    def ensure_customer(self, user: User) -> str:
        """Create or reuse the Stripe customer id stored on the user."""
        if not settings.STRIPE_SECRET_KEY:
            raise StripeServiceError("Stripe secret key is not configured")

        db_user = self.db.get(User, user.id)
        if not db_user:
            raise StripeServiceError("User not found in session")

        if db_user.stripe_customer_id:
            return db_user.stripe_customer_id

        customer = self.stripe.Customer.create(
            email=db_user.email,
            name=db_user.name,
            metadata={"user_id": str(db_user.id)},
        )
        customer_id = customer.get("id")
        if not customer_id:
            raise StripeServiceError("Stripe did not return a customer id")
        with unit_of_work(self.db):
            db_user.stripe_customer_id = customer_id
        logger.info("Linked user %s to Stripe customer %s", db_user.id, customer_id)
        return customer_id

    def checkout_urls(self, language: str | None) -> tuple[str, str]:
        # Only known languages end up in the redirect path.
        lang = (language or "").strip().lower()
        if lang not in settings.CHECKOUT_LANGUAGES:
            lang = settings.CHECKOUT_LANGUAGES[0]
        base = settings.FRONTEND_BASE_URL
        return (
            f"{base}/{lang}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            f"{base}/{lang}/pricing?payment=cancelled",
        )

    def create_checkout_session(
        self,
        user: User,
        *,
        package: CreditPackage,
        success_url: str,
        cancel_url: str,
        discount: CheckoutDiscount | None = None,
    ) -> Any:
        """Create a Stripe Checkout Session for one credit package."""
        customer_id = self.ensure_customer(user)
        amount = package.price - (discount.amount if discount else 0)
        if amount <= 0:
            raise StripeServiceError("Discount cannot cover the full package price")

        logger.info(
            "Creating Stripe checkout session: user=%s customer=%s package=%s amount=%s",
            user.id,
            customer_id,
            package.id,
            amount,
        )
        metadata = {
            "user_id": str(user.id),
            "package_id": package.id,
            "credits": str(package.credits),
            "environment": settings.ENV,
        }
        if discount:
            metadata["promo_code_id"] = str(discount.promo_code.id)
            metadata["discount_amount"] = str(discount.amount)

        return self.stripe.checkout.Session.create(
            mode="payment",
            customer=customer_id,
            payment_method_types=["card"],
            success_url=success_url,
            cancel_url=cancel_url,
            line_items=[
                {
                    "price_data": {
                        "currency": package.currency,
                        "product_data": {
                            "name": f"{package.credits} Credits",
                            "description": f"PureTools AI Credit Package - {package.name}",
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
        )

    # ------------------------------------------------------------------
    # Webhook handling
    # ------------------------------------------------------------------
    def parse_event(self, payload: bytes, signature: str | None) -> Any:
        """Validate webhook signature and deserialize the event."""
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise StripeWebhookError("Stripe webhook secret is not configured")
        if not signature:
            raise StripeWebhookError("Missing Stripe-Signature header")
        try:
            return self.stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=settings.STRIPE_WEBHOOK_SECRET,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise StripeWebhookError(f"Invalid Stripe signature: {exc}") from exc

    def process_event(self, event: Any, raw_payload: dict[str, Any]) -> bool:
        """
        Persist the incoming event and invoke handlers once per Stripe id.

        Returns True if credits were applied, False if the event was already
        processed or does not affect credit balances. Storage failures mark the
        event failed and propagate so Stripe redelivers it.
        """
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise StripeServiceError("Stripe event missing id/type")

        if not self._claim_event(event_id, event_type, raw_payload):
            logger.info("Stripe event %s already processed; skipping", event_id)
            return False

        try:
            with unit_of_work(self.db):
                handled = self._dispatch_event(event)
                status = StripeEventStatus.PROCESSED if handled else StripeEventStatus.SKIPPED
                self._update_event_status(event_id, status, error=None)
            return handled
        except Exception as exc:
            logger.exception("Stripe event %s failed: %s", event_id, exc)
            self._mark_event_failed(event_id, exc)
            raise

    def _claim_event(self, event_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        """Insert the audit row; a failed earlier attempt may be claimed again."""
        record = StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=StripeEventStatus.PENDING.value,
        )
        try:
            with unit_of_work(self.db):
                self.db.add(record)
            return True
        except IntegrityError as exc:
            if not self._is_unique_violation(exc):
                raise
        finally:
            if record in self.db:
                self.db.expunge(record)

        with unit_of_work(self.db):
            existing = self._get_event(event_id)
            if existing is None or existing.status != StripeEventStatus.FAILED.value:
                return False
            existing.status = StripeEventStatus.PENDING.value
            existing.error_message = None
        logger.info("Retrying previously failed Stripe event %s", event_id)
        return True

    def _dispatch_event(self, event: Any) -> bool:
        event_type = event.get("type")
        if event_type == "checkout.session.completed":
            return self._handle_checkout_session(event)
        if event_type == "payment_intent.payment_failed":
            intent = (event.get("data") or {}).get("object") or {}
            logger.warning("Stripe payment failed: payment_intent=%s", intent.get("id"))
            return False
        logger.info("Ignoring unsupported Stripe event type: %s", event_type)
        return False

    def _handle_checkout_session(self, event: Any) -> bool:
        session = (event.get("data") or {}).get("object") or {}
        session_id = session.get("id")
        if session.get("payment_status") != "paid":
            logger.info(
                "Checkout session %s not paid (status=%s); skipping",
                session_id,
                session.get("payment_status"),
            )
            return False

        metadata = session.get("metadata") or {}
        try:
            user_id = int(metadata.get("user_id") or 0)
            credits = int(metadata.get("credits") or 0)
        except (TypeError, ValueError):
            user_id, credits = 0, 0
        package_id = metadata.get("package_id")

        if not session_id or user_id <= 0 or credits <= 0:
            logger.error(
                "Checkout session %s missing or invalid metadata (user_id=%r credits=%r); skipping",
                session_id,
                metadata.get("user_id"),
                metadata.get("credits"),
            )
            return False

        package = get_package(package_id)
        if package and package.credits != credits:
            logger.warning(
                "Checkout session %s credits %s differ from package %s (%s)",
                session_id,
                credits,
                package.id,
                package.credits,
            )

        description = f"Credit purchase - {package_id}" if package_id else "Credit purchase"
        result = CreditsService(self.db).add_credits(
            user_id=user_id,
            amount=credits,
            type=TransactionType.PURCHASE,
            description=description,
            metadata={
                "stripe_event_id": event.get("id"),
                "stripe_session_id": session_id,
                "stripe_payment_intent": session.get("payment_intent"),
                "package_id": package_id,
                "amount_total": session.get("amount_total"),
            },
            idempotency_key=session_idempotency_key(session_id),
            commit=False,
        )
        if not result.success:
            logger.error("Checkout session %s not credited: %s", session_id, result.error)
            return False
        if result.duplicate:
            logger.info("Checkout session %s already credited; skipping", session_id)
            return False

        promo_code_id = metadata.get("promo_code_id")
        if promo_code_id:
            try:
                recorded = PromoService(self.db).record_discount_redemption(int(promo_code_id), user_id)
            except ValueError:
                recorded = False
            if not recorded:
                logger.warning("Discount promo %s not recorded for user %s", promo_code_id, user_id)

        record = self._get_event(event.get("id"))
        if record is not None:
            record.user_id = user_id
            record.checkout_session_id = session_id
            record.credits_applied = credits

        logger.info("Added %s credits to user %s (session %s)", credits, user_id, session_id)
        return True

    def _get_event(self, event_id: str | None) -> StripeEvent | None:
        if not event_id:
            return None
        return self.db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()

    def _update_event_status(
        self,
        event_id: str,
        status: StripeEventStatus,
        error: str | None,
    ) -> None:
        record = self._get_event(event_id)
        if not record:
            return
        record.status = status.value
        record.error_message = (error or "")[:MAX_ERROR_MESSAGE_LENGTH] if error else None
        record.processed_at = self._now()

    def _mark_event_failed(self, event_id: str, exc: Exception) -> None:
        message = str(exc)
        with unit_of_work(self.db):
            record = self._get_event(event_id)
            if not record:
                return
            record.status = StripeEventStatus.FAILED.value
            record.error_message = message[:MAX_ERROR_MESSAGE_LENGTH]
            record.processed_at = self._now()

    def _is_unique_violation(self, exc: IntegrityError) -> bool:
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None)
        if pgcode == "23505":
            return True
        message = str(orig or exc)
        return "stripe_events_stripe_event_id_key" in message or "UNIQUE constraint failed: stripe_events.stripe_event_id" in message

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


def parse_raw_payload(payload: bytes) -> dict[str, Any]:
    """
    Deserialize the raw webhook payload as JSON for StripeEvent auditing.
    """
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        logger.error("Unable to parse Stripe payload: %s", exc)
        return {}
