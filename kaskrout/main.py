from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, BeforeValidator, Field
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaskrout import reconcile, reports, store
from kaskrout.config import settings
from kaskrout.counts import CountPatch
from kaskrout.db import get_db
from kaskrout.errors import (
    ConflictError,
    ForbiddenError,
    KaskroutError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from kaskrout.models import (
    Consumable,
    ConsumableUsage,
    Expense,
    Product,
    Purchase,
    Sale,
    SessionToken,
    User,
)
from kaskrout.reports import money
from kaskrout.security import (
    Identity,
    check_password,
    get_current_user,
    hash_password,
    issue_token,
    require_write,
    revoke_token,
)
from kaskrout.store import UsageKey

logger = logging.getLogger(__name__)

app = FastAPI(title="Kaskrout API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RECONCILE_WARNING = "earnings_not_reconciled"
MAX_RECONCILE_DAYS = 366


@app.exception_handler(KaskroutError)
def handle_domain_error(request: Request, exc: KaskroutError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "something went wrong", "code": "internal_error"})


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_day(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    return value


Day = Annotated[date, BeforeValidator(_to_day)]


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(_to_day(value))
    except ValueError:
        raise ValidationError(f"invalid date: {value}") from None


def _period_bounds(value: str) -> tuple[date, date]:
    """Translate a ``today`` / ``YYYY-MM-DD`` / ``YYYY-MM`` / ``YYYY`` filter into [start, end)."""
    if value == "today":
        start = _now().date()
        return start, start + timedelta(days=1)
    parts = value.split("-")
    try:
        numbers = [int(part) for part in parts]
        if len(parts) == 3:
            start = date(*numbers)
            return start, start + timedelta(days=1)
        if len(parts) == 2:
            start = date(numbers[0], numbers[1], 1)
            if numbers[1] == 12:
                return start, date(numbers[0] + 1, 1, 1)
            return start, date(numbers[0], numbers[1] + 1, 1)
        if len(parts) == 1 and len(value) == 4:
            return date(numbers[0], 1, 1), date(numbers[0] + 1, 1, 1)
    except ValueError:
        pass
    raise ValidationError(f"invalid date filter: {value}")


def _paginate_by_offset(query, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    offset = cursor or 0
    rows = query.offset(offset).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = offset + limit
        rows = rows[:limit]
    return rows, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


def _commit(db: Session, conflict_detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(conflict_detail) from None


def _ensure_unique_name(db: Session, model, name: str, detail: str, exclude_id: Optional[int] = None) -> None:
    query = select(model.id).where(model.name == name)
    if exclude_id is not None:
        query = query.where(model.id != exclude_id)
    if db.execute(query).first() is not None:
        raise ConflictError(detail)


def _reconcile_warnings(db: Session, day: date) -> list[str]:
    if reconcile.reconcile_after_usage_change(db, day):
        return []
    return [RECONCILE_WARNING]


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/api/v1/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy", "message": "Kaskrout API is running"}


# --- auth and users ---


class RegisterRequest(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "sami", "password": "secret1"}}}
    name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    name: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    current_password: Optional[str] = Field(default=None, min_length=1)
    new_password: Optional[str] = Field(default=None, min_length=6)


class UserCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "cashier", "password": "secret1", "role": "user"}}}
    name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=6)
    role: str = Field(default="user", pattern="^(user|vip|admin)$")


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    role: Optional[str] = Field(default=None, pattern="^(user|vip|admin)$")
    new_password: Optional[str] = Field(default=None, min_length=6)


def _user_data(user: User) -> dict:
    return {
        "user_id": user.id,
        "name": user.name,
        "role": user.role,
        "created_at": user.created_at.isoformat(),
        "updated_at": user.updated_at.isoformat(),
    }


def _create_user(db: Session, name: str, password: str, role: str) -> User:
    _ensure_unique_name(db, User, name, "user already exists")
    stamp = _now()
    user = User(
        name=name,
        password_hash=hash_password(password),
        role=role,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(user)
    _commit(db, "user already exists")
    db.refresh(user)
    logger.info("Created user %s with role %s", user.name, user.role)
    return user


@app.post("/api/v1/auth/register", tags=["Auth"])
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    if not settings.allow_registration:
        raise ForbiddenError("registration is disabled")
    user = _create_user(db, payload.name, payload.password, "user")
    return {"data": _user_data(user), "meta": _meta()}


@app.post("/api/v1/auth/login", tags=["Auth"])
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> dict:
    user = db.execute(select(User).where(User.name == payload.name)).scalar_one_or_none()
    if user is None or not check_password(payload.password, user.password_hash):
        raise UnauthorizedError("invalid credentials")
    token = issue_token(db, user)
    return {"data": {"token": token, "user": _user_data(user)}, "meta": _meta()}


@app.post("/api/v1/auth/logout", tags=["Auth"])
def logout(identity: Identity = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    revoke_token(db, identity.token_id)
    return {"data": {"logged_out": True}, "meta": _meta()}


@app.get("/api/v1/auth/profile", tags=["Auth"])
def get_profile(identity: Identity = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    user = db.get(User, identity.id)
    if not user:
        raise NotFoundError("user not found")
    return {"data": _user_data(user), "meta": _meta()}


@app.put("/api/v1/auth/profile", tags=["Auth"])
def update_profile(
    payload: ProfileUpdate,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, identity.id)
    if not user:
        raise NotFoundError("user not found")
    changed = False
    if payload.name is not None and payload.name != user.name:
        _ensure_unique_name(db, User, payload.name, "user name already taken", exclude_id=user.id)
        user.name = payload.name
        changed = True
    if payload.new_password is not None:
        if payload.current_password is None:
            raise ValidationError("current password is required to change the password")
        if not check_password(payload.current_password, user.password_hash):
            raise ValidationError("current password is incorrect")
        user.password_hash = hash_password(payload.new_password)
        changed = True
    if not changed:
        raise ValidationError("no changes to save")
    user.updated_at = _now()
    _commit(db, "user name already taken")
    db.refresh(user)
    return {"data": _user_data(user), "meta": _meta()}


@app.get("/api/v1/users", tags=["Users"])
def list_users(
    identity: Identity = Depends(require_write("users")),
    db: Session = Depends(get_db),
) -> dict:
    users = db.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars()
    return {"data": [_user_data(user) for user in users], "meta": _meta()}


@app.post("/api/v1/users", tags=["Users"])
def create_user(
    payload: UserCreate,
    identity: Identity = Depends(require_write("users")),
    db: Session = Depends(get_db),
) -> dict:
    user = _create_user(db, payload.name, payload.password, payload.role)
    return {"data": _user_data(user), "meta": _meta()}


@app.put("/api/v1/users/{user_id}", tags=["Users"])
def update_user(
    user_id: int,
    payload: UserUpdate,
    identity: Identity = Depends(require_write("users")),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("user not found")
    if payload.name is not None and payload.name != user.name:
        _ensure_unique_name(db, User, payload.name, "user name already taken", exclude_id=user.id)
        user.name = payload.name
    if payload.role is not None:
        user.role = payload.role
    if payload.new_password is not None:
        user.password_hash = hash_password(payload.new_password)
    user.updated_at = _now()
    _commit(db, "user name already taken")
    db.refresh(user)
    return {"data": _user_data(user), "meta": _meta()}


@app.delete("/api/v1/users/{user_id}", tags=["Users"])
def delete_user(
    user_id: int,
    identity: Identity = Depends(require_write("users")),
    db: Session = Depends(get_db),
) -> dict:
    if user_id == identity.id:
        raise ValidationError("cannot delete your own account")
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("user not found")
    db.execute(delete(SessionToken).where(SessionToken.user_id == user_id))
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)
    return {"data": {"user_id": user_id, "deleted": True}, "meta": _meta()}


# --- catalog ---


class ConsumableCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Bread", "price": 0.5}}}
    name: str = Field(min_length=1, max_length=100)
    price: Decimal = Field(gt=0, max_digits=12, decimal_places=3)
    current_stock: int = Field(default=0, ge=0)


class ConsumableUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=3)
    current_stock: Optional[int] = Field(default=None, ge=0)


class ProductCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Sandwich thon", "category": "sandwich", "price": 4.5}}}
    name: str = Field(min_length=1, max_length=100)
    category: Optional[str] = None
    price: Decimal = Field(gt=0, max_digits=12, decimal_places=3)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=3)


def _consumable_data(consumable: Consumable) -> dict:
    return {
        "consumable_id": consumable.id,
        "name": consumable.name,
        "price": money(consumable.price),
        "current_stock": consumable.current_stock,
    }


def _product_data(product: Product) -> dict:
    return {
        "product_id": product.id,
        "name": product.name,
        "category": product.category,
        "price": money(product.price),
    }


@app.get("/api/v1/consumables", tags=["Consumables"])
def list_consumables(
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    rows = db.execute(select(Consumable).order_by(Consumable.name)).scalars()
    return {"data": [_consumable_data(row) for row in rows], "meta": _meta()}


@app.post("/api/v1/consumables", tags=["Consumables"])
def create_consumable(
    payload: ConsumableCreate,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    detail = "consumable with this name already exists"
    _ensure_unique_name(db, Consumable, payload.name, detail)
    stamp = _now()
    consumable = Consumable(
        name=payload.name,
        price=payload.price,
        current_stock=payload.current_stock,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(consumable)
    _commit(db, detail)
    db.refresh(consumable)
    return {"data": _consumable_data(consumable), "meta": _meta()}


@app.put("/api/v1/consumables/{consumable_id}", tags=["Consumables"])
def update_consumable(
    consumable_id: int,
    payload: ConsumableUpdate,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    detail = "consumable with this name already exists"
    consumable = db.get(Consumable, consumable_id)
    if not consumable:
        raise NotFoundError("consumable not found")
    if payload.name is not None:
        _ensure_unique_name(db, Consumable, payload.name, detail, exclude_id=consumable_id)
        consumable.name = payload.name
    if payload.price is not None:
        # past days keep their stored cost until re-saved or reconciled
        consumable.price = payload.price
    if payload.current_stock is not None:
        consumable.current_stock = payload.current_stock
    consumable.updated_at = _now()
    _commit(db, detail)
    db.refresh(consumable)
    return {"data": _consumable_data(consumable), "meta": _meta()}


@app.delete("/api/v1/consumables/{consumable_id}", tags=["Consumables"])
def delete_consumable(
    consumable_id: int,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    consumable = db.get(Consumable, consumable_id)
    if not consumable:
        raise NotFoundError("consumable not found")
    in_use = db.execute(
        select(func.count(ConsumableUsage.id)).where(ConsumableUsage.consumable_id == consumable_id)
    ).scalar_one()
    purchased = db.execute(
        select(func.count(Purchase.id)).where(Purchase.consumable_id == consumable_id)
    ).scalar_one()
    if in_use or purchased:
        raise ConflictError("cannot delete consumable with existing usage or purchase records")
    db.delete(consumable)
    db.commit()
    return {"data": {"consumable_id": consumable_id, "deleted": True}, "meta": _meta()}


@app.get("/api/v1/products", tags=["Products"])
def list_products(
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    rows = db.execute(select(Product).order_by(Product.name)).scalars()
    return {"data": [_product_data(row) for row in rows], "meta": _meta()}


@app.post("/api/v1/products", tags=["Products"])
def create_product(
    payload: ProductCreate,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    detail = "product with this name already exists"
    _ensure_unique_name(db, Product, payload.name, detail)
    stamp = _now()
    product = Product(
        name=payload.name,
        category=payload.category,
        price=payload.price,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(product)
    _commit(db, detail)
    db.refresh(product)
    return {"data": _product_data(product), "meta": _meta()}


@app.put("/api/v1/products/{product_id}", tags=["Products"])
def update_product(
    product_id: int,
    payload: ProductUpdate,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    detail = "product with this name already exists"
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("product not found")
    if payload.name is not None:
        _ensure_unique_name(db, Product, payload.name, detail, exclude_id=product_id)
        product.name = payload.name
    if "category" in payload.model_fields_set:
        product.category = payload.category
    if payload.price is not None:
        product.price = payload.price
    product.updated_at = _now()
    _commit(db, detail)
    db.refresh(product)
    return {"data": _product_data(product), "meta": _meta()}


@app.delete("/api/v1/products/{product_id}", tags=["Products"])
def delete_product(
    product_id: int,
    identity: Identity = Depends(require_write("catalog")),
    db: Session = Depends(get_db),
) -> dict:
    product = db.get(Product, product_id)
    if not product:
        raise NotFoundError("product not found")
    sold = db.execute(select(func.count(Sale.id)).where(Sale.product_id == product_id)).scalar_one()
    if sold:
        raise ConflictError("cannot delete product with existing sales records")
    db.delete(product)
    db.commit()
    return {"data": {"product_id": product_id, "deleted": True}, "meta": _meta()}


# --- daily records ---


class UsageSave(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"record_date": "2024-01-10", "consumable_id": 1, "start_count": 50, "end_count": 12}
        }
    }
    record_date: Day
    consumable_id: int = Field(gt=0)
    start_count: int = Field(ge=0)
    end_count: int = Field(ge=0)


class UsagePatch(BaseModel):
    start_count: Optional[int] = Field(default=None, ge=0)
    end_count: Optional[int] = Field(default=None, ge=0)


class BaguettesSave(BaseModel):
    record_date: Day
    start_count: int = Field(ge=0)
    end_count: int = Field(ge=0)


class EarningsSave(BaseModel):
    model_config = {
        "json_schema_extra": {"example": {"record_date": "2024-01-10", "total_earnings": 120.0, "notes": ""}}
    }
    record_date: Day
    total_earnings: Decimal = Field(ge=0, max_digits=12, decimal_places=3)
    notes: Optional[str] = None


class ReconcileRequest(BaseModel):
    from_date: Day
    to_date: Day


@app.get("/api/v1/daily/consumables/{record_date}", tags=["Daily"])
def list_daily_consumables(
    record_date: str,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    day = _parse_day(record_date)
    data = [reports.usage_data(usage) for usage in store.list_usage_for_day(db, day)]
    return {"data": data, "meta": _meta()}


@app.post("/api/v1/daily/consumables", tags=["Daily"])
def save_daily_consumable(
    payload: UsageSave,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    usage = store.upsert_usage(
        db,
        UsageKey(payload.record_date, payload.consumable_id),
        payload.start_count,
        payload.end_count,
    )
    data = reports.usage_data(usage)
    warnings = _reconcile_warnings(db, payload.record_date)
    return {"data": data, "meta": _meta(warnings=warnings)}


@app.put("/api/v1/daily/consumables/{usage_id}", tags=["Daily"])
def update_daily_consumable(
    usage_id: int,
    payload: UsagePatch,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    usage = store.patch_usage(db, usage_id, CountPatch(payload.start_count, payload.end_count))
    data = reports.usage_data(usage)
    warnings = _reconcile_warnings(db, usage.record_date)
    return {"data": data, "meta": _meta(warnings=warnings)}


@app.delete("/api/v1/daily/consumables/{usage_id}", tags=["Daily"])
def delete_daily_consumable(
    usage_id: int,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    day = store.delete_usage(db, usage_id)
    warnings = _reconcile_warnings(db, day)
    return {"data": {"usage_id": usage_id, "deleted": True}, "meta": _meta(warnings=warnings)}


@app.get("/api/v1/daily/baguettes/{record_date}", tags=["Daily"])
def get_daily_baguettes(
    record_date: str,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    day = _parse_day(record_date)
    return {"data": reports.baguettes_data(day, store.get_baguettes(db, day)), "meta": _meta()}


@app.post("/api/v1/daily/baguettes", tags=["Daily"])
def save_daily_baguettes(
    payload: BaguettesSave,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    row = store.upsert_baguettes(db, payload.record_date, payload.start_count, payload.end_count)
    return {"data": reports.baguettes_data(payload.record_date, row), "meta": _meta()}


@app.get("/api/v1/daily/earnings/{record_date}", tags=["Daily"])
def get_daily_earnings(
    record_date: str,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    day = _parse_day(record_date)
    return {"data": reports.earnings_data(day, store.get_earnings(db, day)), "meta": _meta()}


@app.post("/api/v1/daily/earnings", tags=["Daily"])
def save_daily_earnings(
    payload: EarningsSave,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    row = reconcile.save_earnings(db, payload.record_date, payload.total_earnings, payload.notes or "")
    return {"data": reports.earnings_data(payload.record_date, row), "meta": _meta()}


@app.get("/api/v1/daily/summary/{record_date}", tags=["Daily"])
def get_daily_summary(
    record_date: str,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": reports.summarize(db, _parse_day(record_date)), "meta": _meta()}


@app.get("/api/v1/daily/weekly/{anchor_date}", tags=["Daily"])
def get_weekly_report(
    anchor_date: str,
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    report = reports.weekly_report(db, _parse_day(anchor_date))
    warnings = [f"day_unavailable:{day['date']}" for day in report["days"] if not day["available"]]
    return {"data": report, "meta": _meta(warnings=warnings)}


@app.post("/api/v1/daily/reconcile", tags=["Daily"])
def repair_reconciliation(
    payload: ReconcileRequest,
    identity: Identity = Depends(require_write("daily")),
    db: Session = Depends(get_db),
) -> dict:
    if (payload.to_date - payload.from_date).days >= MAX_RECONCILE_DAYS:
        raise ValidationError(f"range must span fewer than {MAX_RECONCILE_DAYS} days")
    repaired = reconcile.reconcile_range(db, payload.from_date, payload.to_date)
    data = {
        "from_date": payload.from_date.isoformat(),
        "to_date": payload.to_date.isoformat(),
        "days": [reports.earnings_data(row.record_date, row) for row in repaired],
    }
    return {"data": data, "meta": _meta()}


# --- purchases, sales, expenses, leftovers ---


class PurchaseCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"consumable_id": 1, "quantity": 40, "cost": 18.0, "purchase_date": "2024-01-10"}
        }
    }
    consumable_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    cost: Decimal = Field(ge=0, max_digits=12, decimal_places=3)
    purchase_date: Optional[Day] = None


class SaleLine(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)


class SaleCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"items": [{"product_id": 1, "quantity": 2}]}}}
    items: list[SaleLine] = Field(min_length=1)


class ExpenseCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"type": "gas", "amount": 25.0, "description": "bottle refill", "expense_date": "2024-01-10"}
        }
    }
    type: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=3)
    description: Optional[str] = None
    expense_date: Optional[Day] = None


class LeftoverSave(BaseModel):
    record_date: Day
    bread_baguettes: int = Field(default=0, ge=0)
    cooked_eggs: int = Field(default=0, ge=0)
    salami_pieces: int = Field(default=0, ge=0)
    notes: Optional[str] = None


def _purchase_data(purchase: Purchase) -> dict:
    return {
        "purchase_id": purchase.id,
        "consumable_id": purchase.consumable_id,
        "consumable_name": purchase.consumable.name,
        "quantity": purchase.quantity,
        "cost": money(purchase.cost),
        "purchase_date": purchase.purchase_date.isoformat(),
    }


def _sale_data(sale: Sale) -> dict:
    return {
        "sale_id": sale.id,
        "product_id": sale.product_id,
        "product_name": sale.product.name,
        "quantity": sale.quantity,
        "total_price": money(sale.total_price),
        "sale_timestamp": sale.sale_timestamp.isoformat(),
    }


def _expense_data(expense: Expense) -> dict:
    return {
        "expense_id": expense.id,
        "type": expense.expense_type,
        "amount": money(expense.amount),
        "description": expense.description,
        "expense_date": expense.expense_date.isoformat(),
    }


def _leftover_data(day: date, row) -> dict:
    if row is None:
        return {"record_date": day.isoformat(), "bread_baguettes": 0, "cooked_eggs": 0, "salami_pieces": 0, "notes": ""}
    return {
        "record_date": row.record_date.isoformat(),
        "bread_baguettes": row.bread_baguettes,
        "cooked_eggs": row.cooked_eggs,
        "salami_pieces": row.salami_pieces,
        "notes": row.notes,
    }


@app.post("/api/v1/purchases", tags=["Purchases"])
def create_purchase(
    payload: PurchaseCreate,
    identity: Identity = Depends(require_write("purchases")),
    db: Session = Depends(get_db),
) -> dict:
    if db.get(Consumable, payload.consumable_id) is None:
        raise NotFoundError("consumable not found")
    purchase = Purchase(
        consumable_id=payload.consumable_id,
        quantity=payload.quantity,
        cost=payload.cost,
        purchase_date=payload.purchase_date or _now().date(),
        created_at=_now(),
    )
    db.add(purchase)
    db.execute(
        update(Consumable)
        .where(Consumable.id == payload.consumable_id)
        .values(current_stock=Consumable.current_stock + payload.quantity)
        .execution_options(synchronize_session=False)
    )
    # purchase row and stock increment land in one transaction
    db.commit()
    db.refresh(purchase)
    db.refresh(purchase.consumable)
    logger.info(
        "Recorded purchase of %s x consumable %s, stock now %s",
        purchase.quantity,
        purchase.consumable_id,
        purchase.consumable.current_stock,
    )
    data = _purchase_data(purchase)
    data["current_stock"] = purchase.consumable.current_stock
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/purchases", tags=["Purchases"])
def list_purchases(
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[int] = Query(default=None, ge=0),
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Purchase).order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
    rows, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {"data": [_purchase_data(row) for row in rows], "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/api/v1/sales", tags=["Sales"])
def create_sales(
    payload: SaleCreate,
    identity: Identity = Depends(require_write("sales")),
    db: Session = Depends(get_db),
) -> dict:
    products: dict[int, Product] = {}
    for line in payload.items:
        product = db.get(Product, line.product_id)
        if product is None:
            raise NotFoundError(f"product with id {line.product_id} not found")
        products[line.product_id] = product

    stamp = _now()
    sales = [
        Sale(
            product_id=line.product_id,
            quantity=line.quantity,
            total_price=products[line.product_id].price * line.quantity,
            sale_timestamp=stamp,
        )
        for line in payload.items
    ]
    db.add_all(sales)
    # the whole batch commits or nothing does
    db.commit()
    for sale in sales:
        db.refresh(sale)
    total = sum((sale.total_price for sale in sales), Decimal("0"))
    logger.info("Recorded %s sale line(s) totalling %s", len(sales), total)
    return {
        "data": {"total_sale_value": money(total), "sales": [_sale_data(sale) for sale in sales]},
        "meta": _meta(),
    }


@app.get("/api/v1/sales", tags=["Sales"])
def list_sales(
    date_filter: Optional[str] = Query(default=None, alias="date"),
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[int] = Query(default=None, ge=0),
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Sale)
    if date_filter is not None:
        start, end = _period_bounds(date_filter)
        query = query.filter(
            Sale.sale_timestamp >= datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc),
            Sale.sale_timestamp < datetime.combine(end, datetime.min.time(), tzinfo=timezone.utc),
        )
    query = query.order_by(Sale.sale_timestamp.desc(), Sale.id.desc())
    rows, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {"data": [_sale_data(row) for row in rows], "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/api/v1/expenses", tags=["Expenses"])
def create_expense(
    payload: ExpenseCreate,
    identity: Identity = Depends(require_write("expenses")),
    db: Session = Depends(get_db),
) -> dict:
    expense = Expense(
        expense_type=payload.type,
        amount=payload.amount,
        description=payload.description,
        expense_date=payload.expense_date or _now().date(),
        created_at=_now(),
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return {"data": _expense_data(expense), "meta": _meta()}


@app.get("/api/v1/expenses", tags=["Expenses"])
def list_expenses(
    date_filter: Optional[str] = Query(default=None, alias="date"),
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[int] = Query(default=None, ge=0),
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Expense)
    if date_filter is not None:
        start, end = _period_bounds(date_filter)
        query = query.filter(Expense.expense_date >= start, Expense.expense_date < end)
    query = query.order_by(Expense.expense_date.desc(), Expense.id.desc())
    rows, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {"data": [_expense_data(row) for row in rows], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/leftovers", tags=["Leftovers"])
def get_leftovers(
    record_date: str = Query(alias="date"),
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    day = _parse_day(record_date)
    return {"data": _leftover_data(day, store.get_leftover(db, day)), "meta": _meta()}


@app.post("/api/v1/leftovers", tags=["Leftovers"])
def save_leftovers(
    payload: LeftoverSave,
    identity: Identity = Depends(require_write("leftovers")),
    db: Session = Depends(get_db),
) -> dict:
    row = store.upsert_leftover(
        db,
        payload.record_date,
        payload.bread_baguettes,
        payload.cooked_eggs,
        payload.salami_pieces,
        payload.notes or "",
    )
    return {"data": _leftover_data(payload.record_date, row), "meta": _meta()}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)
