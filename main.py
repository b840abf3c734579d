import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from analytics import cents_to_amount
from config import get_settings
from csv_utils import export_expenses
from database import SessionLocal, check_database, create_schema
from errors import (
    AuthError,
    RateLimitError,
    ValidationError,
    format_validation_errors,
    register_error_handlers,
)
from models import Budget, Category, Expense, User
from rate_limit import InMemoryRateLimiter, RateLimiter, RateLimitRule, rules_from_settings
from scheduler import SchedulerManager
from schemas import (
    AnalyticsFilters,
    BudgetIn,
    BudgetUpdate,
    CategoryFilters,
    CategoryIn,
    ExpenseFilters,
    ExpenseIn,
    ExpenseUpdate,
    LoginIn,
    RegisterIn,
)
from security import InvalidToken, verify_access_token
from services import (
    AnalyticsService,
    AuthService,
    BudgetService,
    CategoryService,
    ExpenseService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_schema()
    scheduler_manager = None
    if settings.scheduler_enabled:
        scheduler_manager = SchedulerManager(app.state.rate_limiter)
        scheduler_manager.start()
    yield
    if scheduler_manager is not None:
        scheduler_manager.stop()


app = FastAPI(title="Finance Tracker API", lifespan=lifespan)
app.state.rate_limiter = InMemoryRateLimiter()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
register_error_handlers(app)
rate_rules = rules_from_settings(settings)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} - {response.status_code} - "
        f"{duration_ms:.0f}ms - client={client_key(request)}"
    )
    return response


# dependencies


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def current_user_id(request: Request) -> int:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            token = header[len("Bearer ") :].strip()
    if not token:
        raise AuthError("Not authenticated")
    try:
        return verify_access_token(token)
    except InvalidToken as exc:
        raise AuthError("Invalid or expired token") from exc


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def rate_limited(rule: RateLimitRule) -> Callable[..., None]:
    def check(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        decision = limiter.hit(client_key(request), rule)
        if not decision.allowed:
            logger.warning(f"rate_limited: rule={rule.name} client={client_key(request)}")
            raise RateLimitError(rule.message, decision.retry_after)

    return check


def _criteria(model: type[BaseModel], **values: Optional[str]):
    try:
        return model.model_validate(
            {to_camel(key): value for key, value in values.items() if value is not None}
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            "Validation failed", errors=format_validation_errors(exc.errors())
        ) from exc


def category_filters(type: Optional[str] = Query(default=None)) -> CategoryFilters:
    return _criteria(CategoryFilters, type=type)


def expense_filters(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    category_id: Optional[str] = Query(default=None, alias="categoryId"),
    type: Optional[str] = Query(default=None),
) -> ExpenseFilters:
    return _criteria(
        ExpenseFilters,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        type=type,
    )


def analytics_filters(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    type: Optional[str] = Query(default=None),
    months: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
) -> AnalyticsFilters:
    return _criteria(
        AnalyticsFilters,
        start_date=start_date,
        end_date=end_date,
        type=type,
        months=months,
        limit=limit,
    )


# serializers


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_json(user: User) -> dict[str, object]:
    return {"id": user.id, "email": user.email, "createdAt": _iso(user.created_at)}


def category_json(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "userId": category.user_id,
        "createdAt": _iso(category.created_at),
    }


def expense_json(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": cents_to_amount(expense.amount_cents),
        "description": expense.description,
        "date": expense.date.isoformat(),
        "type": expense.type.value,
        "categoryId": expense.category_id,
        "userId": expense.user_id,
        "createdAt": _iso(expense.created_at),
        "category": category_json(expense.category) if expense.category else None,
    }


def budget_json(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "name": budget.name,
        "amount": cents_to_amount(budget.amount_cents),
        "period": budget.period.value,
        "categoryId": budget.category_id,
        "userId": budget.user_id,
        "createdAt": _iso(budget.created_at),
        "updatedAt": _iso(budget.updated_at),
        "category": category_json(budget.category) if budget.category else None,
    }


def _set_auth_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


# auth

auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


@auth_router.post(
    "/register",
    status_code=201,
    dependencies=[Depends(rate_limited(rate_rules.auth))],
)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    user = AuthService(db).register(data)
    return {"message": "User created", "userId": user.id}


@auth_router.post("/login", dependencies=[Depends(rate_limited(rate_rules.auth))])
def login(data: LoginIn, response: Response, db: Session = Depends(get_db)):
    result = AuthService(db).login(data)
    _set_auth_cookie(
        response, ACCESS_COOKIE, result.access_token, settings.access_token_ttl_secs
    )
    _set_auth_cookie(
        response, REFRESH_COOKIE, result.refresh_token, settings.refresh_token_ttl_secs
    )
    body: dict[str, object] = {
        "message": "Logged in",
        "user": {"id": result.user.id, "email": result.user.email},
    }
    if settings.tokens_in_body:
        body["accessToken"] = result.access_token
        body["refreshToken"] = result.refresh_token
    return body


@auth_router.post("/refresh-token")
def refresh_token(request: Request, response: Response, db: Session = Depends(get_db)):
    access_token = AuthService(db).refresh(request.cookies.get(REFRESH_COOKIE))
    _set_auth_cookie(response, ACCESS_COOKIE, access_token, settings.access_token_ttl_secs)
    return {"accessToken": access_token}


@auth_router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    removed = AuthService(db).logout(request.cookies.get(REFRESH_COOKIE))
    logger.info(f"logout: revoked={removed}")
    response.delete_cookie(ACCESS_COOKIE, httponly=True, samesite="strict")
    response.delete_cookie(REFRESH_COOKIE, httponly=True, samesite="strict")
    return {"message": "Logged out"}


@auth_router.get("/me")
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return user_json(AuthService(db).get_user(user_id))


@auth_router.get("/users", dependencies=[Depends(current_user_id)])
def list_users(db: Session = Depends(get_db)):
    users = [user_json(user) for user in AuthService(db).list_users()]
    return {"users": users, "count": len(users)}


# categories

authenticated = [Depends(current_user_id), Depends(rate_limited(rate_rules.api))]
category_router = APIRouter(
    prefix="/api/categories", tags=["Categories"], dependencies=authenticated
)


@category_router.get("")
def list_categories(
    filters: CategoryFilters = Depends(category_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return [category_json(c) for c in CategoryService(db, user_id).list_all(filters)]


@category_router.post("", status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return category_json(CategoryService(db, user_id).create(data))


@category_router.delete("/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CategoryService(db, user_id).delete(category_id)
    return {"message": "Category deleted successfully"}


# expenses

expense_router = APIRouter(
    prefix="/api/expenses", tags=["Expenses"], dependencies=authenticated
)
expense_writes = [Depends(rate_limited(rate_rules.expense))]


@expense_router.get("")
def list_expenses(
    filters: ExpenseFilters = Depends(expense_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return [expense_json(e) for e in ExpenseService(db, user_id).list(filters)]


@expense_router.post("", status_code=201, dependencies=expense_writes)
def create_expense(
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return expense_json(ExpenseService(db, user_id).create(data))


@expense_router.get("/export/csv")
def export_expenses_csv(
    filters: ExpenseFilters = Depends(expense_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    csv_text = export_expenses(ExpenseService(db, user_id).list(filters))
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=expenses.csv"},
    )


@expense_router.get("/{expense_id}")
def get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return expense_json(ExpenseService(db, user_id).get(expense_id))


@expense_router.put("/{expense_id}", dependencies=expense_writes)
def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return expense_json(ExpenseService(db, user_id).update(expense_id, data))


@expense_router.delete("/{expense_id}", dependencies=expense_writes)
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user_id).delete(expense_id)
    return {"message": "Expense deleted successfully"}


# budgets

budget_router = APIRouter(prefix="/api/budgets", tags=["Budgets"], dependencies=authenticated)


@budget_router.get("")
def list_budgets(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return [budget_json(b) for b in BudgetService(db, user_id).list_all()]


@budget_router.post("", status_code=201)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(BudgetService(db, user_id).create(data))


@budget_router.get("/{budget_id}")
def get_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(BudgetService(db, user_id).get(budget_id))


@budget_router.get("/{budget_id}/progress")
def budget_progress(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    progress = BudgetService(db, user_id).progress(budget_id)
    return {
        "budget": budget_json(progress.budget),
        "spent": cents_to_amount(progress.spent_cents),
        "remaining": cents_to_amount(progress.remaining_cents),
        "percentage": progress.percentage,
        "periodStart": progress.period_start.isoformat(),
        "periodEnd": progress.period_end.isoformat(),
    }


@budget_router.put("/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return budget_json(BudgetService(db, user_id).update(budget_id, data))


@budget_router.delete("/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    BudgetService(db, user_id).delete(budget_id)
    return {"message": "Budget deleted successfully"}


# analytics

analytics_router = APIRouter(
    prefix="/api/analytics", tags=["Analytics"], dependencies=authenticated
)


@analytics_router.get("/summary")
def analytics_summary(
    filters: AnalyticsFilters = Depends(analytics_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).summary(filters)


@analytics_router.get("/category-breakdown")
def analytics_category_breakdown(
    filters: AnalyticsFilters = Depends(analytics_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).category_breakdown(filters)


@analytics_router.get("/monthly-trends")
def analytics_monthly_trends(
    filters: AnalyticsFilters = Depends(analytics_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).monthly_trends(filters.months)


@analytics_router.get("/top-categories")
def analytics_top_categories(
    filters: AnalyticsFilters = Depends(analytics_filters),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db, user_id).top_categories(filters)


# health

health_router = APIRouter(prefix="/api/health", tags=["Health"])


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/health")
def health_check(db: Session = Depends(get_db)):
    if not check_database(db):
        return JSONResponse(
            {
                "status": "unhealthy",
                "timestamp": _utc_timestamp(),
                "services": {"api": "operational", "database": "down"},
                "error": "Database connection failed",
            },
            status_code=503,
        )
    return {
        "status": "healthy",
        "timestamp": _utc_timestamp(),
        "services": {"api": "operational", "database": "operational"},
    }


@health_router.get("/ping")
def ping():
    return {"message": "pong", "timestamp": _utc_timestamp()}


@app.get("/")
def root():
    return {"message": "Welcome to Finance Tracker API"}


for router in (
    auth_router,
    category_router,
    expense_router,
    budget_router,
    analytics_router,
    health_router,
):
    app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
