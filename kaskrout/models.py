from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kaskrout.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
MONEY_TYPE = Numeric(12, 3)

ROLES = ("user", "vip", "admin")


class User(Base):
    __tablename__ = "app_user"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'vip', 'admin')", name="app_user_role"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SessionToken(Base):
    __tablename__ = "session_token"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # sha256 hex of the bearer token; the token itself is never stored
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped[User] = relationship()


class Consumable(Base):
    __tablename__ = "consumable"
    __table_args__ = (
        CheckConstraint("price > 0", name="consumable_price_positive"),
        CheckConstraint("current_stock >= 0", name="consumable_stock_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Product(Base):
    __tablename__ = "product"
    __table_args__ = (CheckConstraint("price > 0", name="product_price_positive"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    category: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ConsumableUsage(Base):
    __tablename__ = "daily_consumable_usage"
    __table_args__ = (
        Index(
            "ix_daily_consumable_usage_key",
            "record_date",
            "consumable_id",
            unique=True,
        ),
        CheckConstraint("start_count >= 0 AND end_count >= 0", name="usage_counts_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    record_date: Mapped[date] = mapped_column(Date, nullable=False)
    consumable_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("consumable.id"), nullable=False
    )
    start_count: Mapped[int] = mapped_column(Integer, nullable=False)
    end_count: Mapped[int] = mapped_column(Integer, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    consumable: Mapped[Consumable] = relationship(lazy="joined")


class DailyBaguettes(Base):
    __tablename__ = "daily_baguettes"
    __table_args__ = (
        CheckConstraint("start_count >= 0 AND end_count >= 0", name="baguettes_counts_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    record_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    start_count: Mapped[int] = mapped_column(Integer, nullable=False)
    end_count: Mapped[int] = mapped_column(Integer, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailyEarnings(Base):
    __tablename__ = "daily_earnings"
    __table_args__ = (
        CheckConstraint("total_earnings >= 0", name="earnings_total_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    record_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    total_earnings: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False, default=Decimal("0"))
    # consumables_cost and net_profit are derived; see kaskrout.reconcile
    consumables_cost: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False, default=Decimal("0"))
    net_profit: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False, default=Decimal("0"))
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Purchase(Base):
    __tablename__ = "purchase"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="purchase_quantity_positive"),
        CheckConstraint("cost >= 0", name="purchase_cost_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    consumable_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("consumable.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    consumable: Mapped[Consumable] = relationship(lazy="joined")


class Sale(Base):
    __tablename__ = "sale"
    __table_args__ = (CheckConstraint("quantity > 0", name="sale_quantity_positive"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    sale_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    product: Mapped[Product] = relationship(lazy="joined")


class Expense(Base):
    __tablename__ = "expense"
    __table_args__ = (CheckConstraint("amount > 0", name="expense_amount_positive"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    expense_type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailyLeftover(Base):
    __tablename__ = "daily_leftover"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    record_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    bread_baguettes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cooked_eggs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    salami_pieces: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
