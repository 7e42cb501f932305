import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import get_db
from models import User, utcnow
from periods import DateRange, resolve_range
from scheduler import SchedulerManager
from schemas import (
    BudgetAlertOut,
    BudgetIn,
    BudgetOut,
    BudgetProgressOut,
    BudgetUpdate,
    BudgetWithSpentOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    ChangePasswordIn,
    ExpenseIn,
    ExpenseOut,
    ExpenseUpdate,
    ForgotPasswordIn,
    IncomeIn,
    IncomeOut,
    IncomeUpdate,
    LoginIn,
    Pagination,
    ProfileUpdateIn,
    RegisterIn,
    ResetPasswordIn,
    UserOut,
)
from security import TokenExpired, TokenInvalid
from services import (
    AuthenticationError,
    AuthService,
    BudgetService,
    BudgetUsage,
    CategoryService,
    ConflictError,
    ExpenseFilters,
    ExpenseService,
    IncomeService,
    IssuedTokens,
    NotFoundError,
    UserService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="FinTrack API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


# Envelopes


def envelope(
    data: Any = None, message: Optional[str] = None, status_code: int = 200
) -> JSONResponse:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data, by_alias=True)
    return JSONResponse(body, status_code=status_code)


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(body, status_code=status_code)


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return error_response(404, str(exc))


@app.exception_handler(ConflictError)
def conflict_handler(request: Request, exc: ConflictError):
    return error_response(409, str(exc))


@app.exception_handler(AuthenticationError)
def authentication_handler(request: Request, exc: AuthenticationError):
    return error_response(401, str(exc))


@app.exception_handler(TokenExpired)
def token_expired_handler(request: Request, exc: TokenExpired):
    return error_response(401, "Access token expired", code="TOKEN_EXPIRED")


@app.exception_handler(TokenInvalid)
def token_invalid_handler(request: Request, exc: TokenInvalid):
    return error_response(401, "Invalid access token")


@app.exception_handler(ValidationError)
def response_validation_handler(request: Request, exc: ValidationError):
    # Raised while shaping a response, so the fault is ours.
    logger.error(f"response_validation_failed: path={request.url.path} error={exc}")
    return error_response(500, "Internal server error")


@app.exception_handler(ValueError)
def value_error_handler(request: Request, exc: ValueError):
    return error_response(400, str(exc))


@app.exception_handler(RequestValidationError)
def validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"][1:]) or None,
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return error_response(400, "Validation failed", errors=errors)


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return error_response(500, "Internal server error")


# Auth plumbing


def access_token_from(request: Request) -> Optional[str]:
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = access_token_from(request)
    if not token:
        raise AuthenticationError("Access token required")
    return AuthService(db).authenticate(token)


def set_auth_cookies(response: JSONResponse, tokens: IssuedTokens) -> None:
    settings = get_settings()
    response.set_cookie(
        "access_token",
        tokens.access_token,
        max_age=settings.access_token_ttl_secs,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )
    response.set_cookie(
        "refresh_token",
        tokens.refresh_token,
        max_age=settings.refresh_token_ttl_secs,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def clear_auth_cookies(response: JSONResponse) -> None:
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")


def session_response(
    user: User, tokens: IssuedTokens, message: str, status_code: int = 200
) -> JSONResponse:
    response = envelope(
        {"user": UserOut.model_validate(user), "accessToken": tokens.access_token},
        message=message,
        status_code=status_code,
    )
    set_auth_cookies(response, tokens)
    return response


# Query parsing


def _int_param(request: Request, name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw}") from exc


def _bool_param(request: Request, name: str) -> Optional[bool]:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in {"true", "1"}:
        return True
    if lowered in {"false", "0"}:
        return False
    raise ValueError(f"Invalid {name}: {raw}")


def range_from_request(request: Request) -> DateRange:
    return resolve_range(
        request.query_params.get("startDate"), request.query_params.get("endDate")
    )


def page_from_request(request: Request) -> tuple[int, int]:
    page = _int_param(request, "page", 1)
    limit = _int_param(request, "limit", 10)
    if page < 1:
        raise ValueError("Page must be at least 1")
    if not 1 <= limit <= 100:
        raise ValueError("Limit must be between 1 and 100")
    return page, limit


def search_from_request(request: Request) -> Optional[str]:
    search = (request.query_params.get("search") or "").strip()
    return search or None


@app.get("/api/health")
def health():
    return envelope(
        {"status": "ok", "timestamp": utcnow().isoformat() + "Z"},
        message="Server is running",
    )


# Auth


@app.post("/api/auth/register")
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    user, tokens = AuthService(db).register(payload)
    return session_response(user, tokens, "User registered successfully", 201)


@app.post("/api/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user, tokens = AuthService(db).login(payload)
    return session_response(user, tokens, "Login successful")


@app.post("/api/auth/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    AuthService(db).logout(request.cookies.get("refresh_token"))
    response = envelope(message="Logout successful")
    clear_auth_cookies(response)
    return response


@app.post("/api/auth/refresh")
def refresh_tokens(request: Request, db: Session = Depends(get_db)):
    user, tokens = AuthService(db).refresh(request.cookies.get("refresh_token"))
    response = envelope(
        {"accessToken": tokens.access_token}, message="Token refreshed successfully"
    )
    set_auth_cookies(response, tokens)
    return response


@app.post("/api/auth/forgot-password")
def forgot_password(payload: ForgotPasswordIn, db: Session = Depends(get_db)):
    AuthService(db).forgot_password(payload)
    return envelope(
        message="If an account with that email exists, a password reset OTP has been sent"
    )


@app.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    AuthService(db).reset_password(payload)
    return envelope(message="Password reset successfully")


@app.get("/api/auth/me")
def me(user: User = Depends(current_user)):
    return envelope({"user": UserOut.model_validate(user)})


@app.post("/api/auth/change-password")
def change_password(
    payload: ChangePasswordIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    UserService(db, user.id).change_password(payload, revoke_sessions=True)
    response = envelope(message="Password changed successfully. Please log in again")
    clear_auth_cookies(response)
    return response


# Users


@app.get("/api/users/profile")
def get_profile(user: User = Depends(current_user)):
    return envelope({"user": UserOut.model_validate(user)})


@app.put("/api/users/profile")
def update_profile(
    payload: ProfileUpdateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    updated = UserService(db, user.id).update_profile(payload)
    return envelope(
        {"user": UserOut.model_validate(updated)}, message="Profile updated successfully"
    )


@app.put("/api/users/password")
def update_password(
    payload: ChangePasswordIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    UserService(db, user.id).change_password(payload)
    return envelope(message="Password updated successfully")


@app.delete("/api/users/account")
def delete_account(user: User = Depends(current_user), db: Session = Depends(get_db)):
    UserService(db, user.id).deactivate()
    response = envelope(message="Account deactivated successfully")
    clear_auth_cookies(response)
    return response


@app.get("/api/users/stats")
def user_stats(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return envelope({"stats": UserService(db, user.id).stats()})


# Categories


@app.post("/api/categories")
def create_category(
    payload: CategoryIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user.id).create(payload)
    return envelope(
        {"category": CategoryOut.from_model(category)},
        message="Category created successfully",
        status_code=201,
    )


@app.get("/api/categories")
def list_categories(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    service = CategoryService(db, user.id)
    include_inactive = _bool_param(request, "includeInactive") or False
    counts = service.expense_counts()
    categories = [
        CategoryOut.from_model(c, counts.get(c.id, 0))
        for c in service.list_all(include_inactive)
    ]
    return envelope({"categories": categories})


@app.get("/api/categories/{category_id}/stats")
def category_stats(
    category_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    stats = CategoryService(db, user.id).stats(category_id, range_from_request(request))
    return envelope(stats)


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    service = CategoryService(db, user.id)
    category = service.get(category_id)
    count = service.expense_counts().get(category.id, 0)
    return envelope({"category": CategoryOut.from_model(category, count)})


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = CategoryService(db, user.id)
    category = service.update(category_id, payload)
    count = service.expense_counts().get(category.id, 0)
    return envelope(
        {"category": CategoryOut.from_model(category, count)},
        message="Category updated successfully",
    )


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    removed = CategoryService(db, user.id).delete(category_id)
    if removed:
        return envelope(message="Category deleted successfully")
    return envelope(message="Category deactivated because it is still in use")


# Expenses


@app.post("/api/expenses")
def create_expense(
    payload: ExpenseIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = ExpenseService(db, user.id)
    expense = service.get(service.create(payload).id)
    return envelope(
        {"expense": ExpenseOut.from_model(expense)},
        message="Expense created successfully",
        status_code=201,
    )


@app.get("/api/expenses")
def list_expenses(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    page, limit = page_from_request(request)
    filters = ExpenseFilters(
        category_id=_int_param(request, "categoryId"),
        date_range=range_from_request(request),
        search=search_from_request(request),
    )
    expenses, total = ExpenseService(db, user.id).list(filters, page, limit)
    return envelope(
        {
            "expenses": [ExpenseOut.from_model(e) for e in expenses],
            "pagination": Pagination.build(page, limit, total),
        }
    )


@app.get("/api/expenses/stats")
def expense_stats(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    return envelope(ExpenseService(db, user.id).stats(range_from_request(request)))


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    expense = ExpenseService(db, user.id).get(expense_id)
    return envelope({"expense": ExpenseOut.from_model(expense)})


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user.id).update(expense_id, payload)
    return envelope(
        {"expense": ExpenseOut.from_model(expense)},
        message="Expense updated successfully",
    )


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    ExpenseService(db, user.id).delete(expense_id)
    return envelope(message="Expense deleted successfully")


# Income


@app.post("/api/income")
def create_income(
    payload: IncomeIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    income = IncomeService(db, user.id).create(payload)
    return envelope(
        {"income": IncomeOut.from_model(income)},
        message="Income created successfully",
        status_code=201,
    )


@app.get("/api/income")
def list_income(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    page, limit = page_from_request(request)
    incomes, total = IncomeService(db, user.id).list(
        range_from_request(request), search_from_request(request), page, limit
    )
    return envelope(
        {
            "incomes": [IncomeOut.from_model(i) for i in incomes],
            "pagination": Pagination.build(page, limit, total),
        }
    )


@app.get("/api/income/stats")
def income_stats(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    return envelope(IncomeService(db, user.id).stats(range_from_request(request)))


@app.get("/api/income/{income_id}")
def get_income(
    income_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    income = IncomeService(db, user.id).get(income_id)
    return envelope({"income": IncomeOut.from_model(income)})


@app.put("/api/income/{income_id}")
def update_income(
    income_id: int,
    payload: IncomeUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    income = IncomeService(db, user.id).update(income_id, payload)
    return envelope(
        {"income": IncomeOut.from_model(income)}, message="Income updated successfully"
    )


@app.delete("/api/income/{income_id}")
def delete_income(
    income_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    IncomeService(db, user.id).delete(income_id)
    return envelope(message="Income deleted successfully")


# Budgets


def progress_out(usage: BudgetUsage) -> BudgetProgressOut:
    return BudgetProgressOut(
        budget=BudgetOut.from_model(usage.budget),
        spent_amount=float(usage.spent),
        remaining_amount=float(usage.remaining),
        percentage_used=float(usage.percentage_used),
        is_over_budget=usage.is_over_budget,
    )


@app.post("/api/budget")
def create_budget(
    payload: BudgetIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, user.id).create(payload)
    return envelope(
        {"budget": BudgetOut.from_model(budget)},
        message="Budget created successfully",
        status_code=201,
    )


@app.get("/api/budget")
def list_budgets(
    request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    rows = BudgetService(db, user.id).list_with_spent(_bool_param(request, "isActive"))
    budgets = [
        BudgetWithSpentOut.from_model(budget, spent=float(spent))
        for budget, spent in rows
    ]
    return envelope({"budgets": budgets})


@app.get("/api/budget/alerts")
def budget_alerts(user: User = Depends(current_user), db: Session = Depends(get_db)):
    alerts = [
        BudgetAlertOut(
            budget=BudgetOut.from_model(usage.budget),
            spent_amount=float(usage.spent),
            percentage_used=float(usage.percentage_used),
            is_over_budget=usage.is_over_budget,
            severity=usage.severity,
        )
        for usage in BudgetService(db, user.id).alerts()
    ]
    return envelope({"alerts": alerts})


@app.get("/api/budget/{budget_id}/progress")
def budget_progress(
    budget_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    return envelope(progress_out(BudgetService(db, user.id).progress(budget_id)))


@app.get("/api/budget/{budget_id}")
def get_budget(
    budget_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    budget = BudgetService(db, user.id).get(budget_id)
    return envelope({"budget": BudgetOut.from_model(budget)})


@app.put("/api/budget/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, user.id).update(budget_id, payload)
    return envelope(
        {"budget": BudgetOut.from_model(budget)}, message="Budget updated successfully"
    )


@app.delete("/api/budget/{budget_id}")
def delete_budget(
    budget_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)
):
    BudgetService(db, user.id).delete(budget_id)
    return envelope(message="Budget deleted successfully")


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
