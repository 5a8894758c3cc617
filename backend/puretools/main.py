import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from puretools.core.config import settings, require_jwt_secret
from puretools.routes.ai import router as ai_router
from puretools.routes.billing import router as billing_router
from puretools.routes.promo import router as promo_router
from puretools.routes.referral import router as referral_router
from puretools.routes.stripe_billing import router as stripe_billing_router
from puretools.routes.users import router as users_router

logger = logging.getLogger(__name__)

require_jwt_secret()

app = FastAPI(title="PureTools")
logger.info(
    "Startup config: ENV=%s RATE_LIMIT_ENABLED=%s backend=%s welcome_bonus=%s",
    settings.ENV,
    settings.RATE_LIMIT_ENABLED,
    settings.RATE_LIMIT_BACKEND,
    settings.WELCOME_BONUS_CREDITS,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message: str
    details: dict | None = None
    code = _error_code(exc.status_code)

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        # Ledger errors carry their own machine-readable code.
        err = detail.get("error")
        if isinstance(err, str) and err:
            code = err
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    payload: dict = {"error": code, "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": _jsonable_errors(exc)},
        },
    )


@app.exception_handler(SQLAlchemyError)
def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Database error"},
    )


def _jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic puts the raw exception in ctx for custom validators
    errors = []
    for err in exc.errors():
        err = dict(err)
        ctx = err.get("ctx")
        if isinstance(ctx, dict):
            err["ctx"] = {k: str(v) for k, v in ctx.items()}
        errors.append(err)
    return errors


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users_router)
app.include_router(billing_router)
app.include_router(stripe_billing_router)
app.include_router(promo_router)
app.include_router(referral_router)
app.include_router(ai_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
