# puretools/routes/users.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from puretools.core.database import get_db
from puretools.core.messages import error_message
from puretools.core.security import Identity
from puretools.dependencies.auth import get_current_user, get_identity
from puretools.dependencies.rate_limit import require_rate_limit
from puretools.models.user import User
from puretools.schemas.user import SignupIn, SignupOut, UserOut
from puretools.services.users import UserAlreadyExistsError, register_user

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "/signup",
    response_model=SignupOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit("signup", limit=5))],
)
def signup(
    payload: SignupIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> SignupOut:
    try:
        result = register_user(db, identity, referral_code=payload.referral_code)
    except UserAlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    referral = result.referral
    referral_error = referral.error.value if referral and referral.error else None
    return SignupOut(
        user=UserOut.model_validate(result.user),
        referral_applied=bool(referral and referral.success),
        referral_error=referral_error,
        referral_message=error_message(referral_error, payload.language) if referral_error else None,
    )


@router.get("/me", response_model=UserOut)
def get_me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user)
