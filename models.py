import datetime as dt
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    gourmet = "gourmet"
    cafe_plus_co = "cafe_plus_co"


class MenuType(str, Enum):
    menu1 = "menu1"
    menu2 = "menu2"
    menu3 = "menu3"
    soup_and_salad = "soup_and_salad"


class FetchFamily(str, Enum):
    billing = "billing"
    menu = "menu"


class BillingTransactionRow(Base):
    __tablename__ = "billing_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    positions: Mapped[list["BillingPositionRow"]] = relationship(
        "BillingPositionRow",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="BillingPositionRow.id",
    )

    __table_args__ = (Index("ix_billing_transactions_date", "date"),)


class BillingPositionRow(Base):
    __tablename__ = "billing_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column("unit_price", Integer, nullable=False)
    support_cents: Mapped[int] = mapped_column("support", Integer, nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("billing_transactions.id", ondelete="CASCADE"), nullable=False
    )

    transaction: Mapped["BillingTransactionRow"] = relationship(
        "BillingTransactionRow", back_populates="positions"
    )


class MenuRow(Base):
    __tablename__ = "menus"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    slot: Mapped[MenuType] = mapped_column(SAEnum(MenuType), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    allergens: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    price_cents: Mapped[int] = mapped_column("price", Integer, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (UniqueConstraint("date", "slot", name="uq_menus_date_slot"),)


class FetchLogRow(Base):
    __tablename__ = "fetch_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family: Mapped[FetchFamily] = mapped_column(SAEnum(FetchFamily), nullable=False)
    period_start: Mapped[dt.date] = mapped_column(Date, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    exhausted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("family", "period_start", name="uq_fetch_log_family_period"),
    )
