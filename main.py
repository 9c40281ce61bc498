import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_current_user,
    get_db,
    get_session_factory,
    get_settings_from_app,
    get_token_service,
)
from config import Settings, get_settings
from errors import ApiError, InternalError
from models import TransactionType, User
from schemas import (
    ChangePasswordIn,
    LoginIn,
    RefreshTokenIn,
    RegisterIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
    UpdateAccountIn,
    UserOut,
)
from services import (
    MetricsService,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
)
from tokens import TokenService

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def api_response(
    status_code: int, data: Any, message: str = "Success"
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": data,
            "message": message,
            "success": status_code < 400,
        },
    )


def api_error(status_code: int, message: str, errors: Optional[list] = None):
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": None,
            "message": message,
            "success": False,
            "errors": jsonable_encoder(errors or []),
        },
    )


def _describe_validation_error(error: dict) -> str:
    loc = [
        str(part)
        for part in error.get("loc", ())
        if part not in ("body", "query", "path")
    ]
    prefix = ".".join(loc)
    msg = error.get("msg", "Invalid value")
    return f"{prefix}: {msg}" if prefix else msg


async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"request_failed: path={request.url.path} error={exc.message}")
    return api_error(exc.status_code, exc.message, exc.errors)


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = list(exc.errors())
    message = _describe_validation_error(errors[0]) if errors else "Invalid request"
    return api_error(400, message, errors)


async def handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return api_error(exc.status_code, str(exc.detail))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"request_crashed: path={request.url.path}")
    error = InternalError()
    return api_error(error.status_code, error.message)


def _set_session_cookies(
    response: JSONResponse, settings: Settings, access_token: str, refresh_token: str
) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.access_token_expiry_secs,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_token_expiry_secs,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _clear_session_cookies(response: JSONResponse, settings: Settings) -> None:
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key, httponly=True, secure=settings.cookie_secure, samesite="lax"
        )


def _user_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings_from_app),
    tokens: TokenService = Depends(get_token_service),
) -> UserService:
    return UserService(db, settings, tokens)


users = APIRouter(prefix="/api/v1/users")
transactions = APIRouter(prefix="/api/v1/transactions")


@users.post("/register")
def register_user(payload: RegisterIn, service: UserService = Depends(_user_service)):
    user = service.register(payload)
    return api_response(201, UserOut.dump(user), "User registered successfully")


@users.post("/login")
def login_user(
    payload: LoginIn,
    service: UserService = Depends(_user_service),
    settings: Settings = Depends(get_settings_from_app),
):
    user, access_token, refresh_token = service.login(payload)
    response = api_response(
        200,
        {
            "user": UserOut.dump(user),
            "accessToken": access_token,
            "refreshToken": refresh_token,
        },
        "User logged in successfully",
    )
    _set_session_cookies(response, settings, access_token, refresh_token)
    return response


@users.post("/refresh-token")
def refresh_access_token(
    request: Request,
    payload: Optional[RefreshTokenIn] = None,
    service: UserService = Depends(_user_service),
    settings: Settings = Depends(get_settings_from_app),
):
    token = request.cookies.get(REFRESH_COOKIE) or (
        payload.refresh_token if payload else None
    )
    _, access_token, refresh_token = service.refresh_session(token)
    response = api_response(
        200,
        {"accessToken": access_token, "refreshToken": refresh_token},
        "Access token refreshed",
    )
    _set_session_cookies(response, settings, access_token, refresh_token)
    return response


@users.get("/me")
def current_user(user: User = Depends(get_current_user)):
    return api_response(200, UserOut.dump(user), "Current user fetched successfully")


@users.post("/logout")
def logout_user(
    user: User = Depends(get_current_user),
    service: UserService = Depends(_user_service),
    settings: Settings = Depends(get_settings_from_app),
):
    service.logout(user.id)
    response = api_response(200, {}, "User logged out successfully")
    _clear_session_cookies(response, settings)
    return response


@users.patch("/update-account")
def update_account(
    payload: UpdateAccountIn,
    user: User = Depends(get_current_user),
    service: UserService = Depends(_user_service),
):
    updated = service.update_profile(user.id, payload)
    return api_response(
        200, UserOut.dump(updated), "Account details updated successfully"
    )


@users.post("/change-password")
def change_password(
    payload: ChangePasswordIn,
    user: User = Depends(get_current_user),
    service: UserService = Depends(_user_service),
):
    service.change_password(user.id, payload)
    return api_response(200, {}, "Password changed successfully")


@transactions.post("")
def create_transaction(
    payload: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user.id).create(payload)
    return api_response(
        201, TransactionOut.dump(txn), "Transaction created successfully"
    )


@transactions.get("")
def list_transactions(
    type: Optional[str] = None,
    period: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn_type = None
    if type:
        try:
            txn_type = TransactionType(type)
        except ValueError:
            txn_type = None
    items = TransactionService(db, user.id).list(
        TransactionFilters(type=txn_type, period=period)
    )
    return api_response(
        200,
        [TransactionOut.dump(txn) for txn in items],
        "Transactions retrieved successfully",
    )


@transactions.get("/stats")
def transaction_stats(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    totals = MetricsService(db, user.id).totals()
    return api_response(200, totals, "Transaction stats retrieved successfully")


@transactions.get("/summary/categories")
def category_summary(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    breakdown = MetricsService(db, user.id).category_breakdown()
    return api_response(
        200, breakdown, "Category breakdown retrieved successfully"
    )


@transactions.get("/reports")
def transaction_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    report = ReportService(db, user.id, session_factory=session_factory).report(
        start_date, end_date
    )
    return api_response(200, report, "Report data retrieved successfully")


@transactions.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user.id).get(transaction_id)
    return api_response(
        200, TransactionOut.dump(txn), "Transaction retrieved successfully"
    )


@transactions.patch("/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user.id).update(transaction_id, payload)
    return api_response(
        200, TransactionOut.dump(txn), "Transaction updated successfully"
    )


@transactions.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    deleted_id = TransactionService(db, user.id).delete(transaction_id)
    return api_response(200, {"id": deleted_id}, "Transaction deleted successfully")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        from database import SessionLocal

        session_factory = SessionLocal

    logging.basicConfig(level=settings.log_level)

    application = FastAPI(title="Finance Tracker", version=APP_VERSION)
    application.state.settings = settings
    application.state.tokens = TokenService(settings)
    application.state.session_factory = session_factory

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(ApiError, handle_api_error)
    application.add_exception_handler(
        RequestValidationError, handle_request_validation
    )
    application.add_exception_handler(StarletteHTTPException, handle_http_exception)
    application.add_exception_handler(Exception, handle_unexpected)

    @application.get("/api/v1/healthcheck")
    def healthcheck():
        return api_response(
            200, {"status": "OK"}, "Server is healthy and running."
        )

    application.include_router(users)
    application.include_router(transactions)
    return application


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
