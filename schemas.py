import datetime as dt
import hashlib
from datetime import timezone
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from models import MenuType, TransactionType
from periods import month_start


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _naive_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class BillingPosition(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int
    unit_price_cents: int
    support_cents: int = 0
    transaction_id: Optional[int] = None

    @computed_field
    @property
    def total_cents(self) -> int:
        return (self.unit_price_cents - self.support_cents) * self.quantity


class BillingTransaction(BaseModel):
    id: Optional[int] = None
    type: TransactionType
    date: dt.datetime
    positions: list[BillingPosition] = Field(default_factory=list)
    hash: str = ""

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: dt.datetime) -> dt.datetime:
        return _naive_utc(value)

    @model_validator(mode="after")
    def _fill_hash(self) -> "BillingTransaction":
        if not self.hash:
            self.hash = self.content_hash()
        return self

    def content_hash(self) -> str:
        parts = [self.type.value, self.date.isoformat()]
        parts.extend(
            f"{p.name}:{p.quantity}:{p.unit_price_cents}:{p.support_cents}"
            for p in self.positions
        )
        return _sha256("|".join(parts))

    @computed_field
    @property
    def total_cents(self) -> int:
        return sum(p.total_cents for p in self.positions)


class BillingMonth(BaseModel):
    """All billed transactions of one calendar month.

    Totals and counts are derived from ``transactions`` on every access, so
    they can never drift from the stored rows.
    """

    month: dt.date
    transactions: list[BillingTransaction] = Field(default_factory=list)

    @field_validator("month")
    @classmethod
    def _first_of_month(cls, value: dt.date) -> dt.date:
        return month_start(value)

    @field_validator("transactions")
    @classmethod
    def _sorted_by_date(
        cls, value: list[BillingTransaction]
    ) -> list[BillingTransaction]:
        return sorted(value, key=lambda t: t.date)

    def _total_for(self, type_: TransactionType) -> int:
        return sum(t.total_cents for t in self.transactions if t.type == type_)

    @computed_field
    @property
    def total_cents(self) -> int:
        return sum(t.total_cents for t in self.transactions)

    @computed_field
    @property
    def total_gourmet_cents(self) -> int:
        return self._total_for(TransactionType.gourmet)

    @computed_field
    @property
    def total_cafe_plus_co_cents(self) -> int:
        return self._total_for(TransactionType.cafe_plus_co)

    @computed_field
    @property
    def count_gourmet(self) -> int:
        return sum(1 for t in self.transactions if t.type == TransactionType.gourmet)

    @computed_field
    @property
    def count_cafe_plus_co(self) -> int:
        return sum(
            1 for t in self.transactions if t.type == TransactionType.cafe_plus_co
        )


class Menu(BaseModel):
    type: MenuType
    title: str = Field(..., min_length=1, max_length=300)
    allergens: list[str] = Field(default_factory=list)
    price_cents: int = Field(..., ge=0)
    date: dt.date

    @field_validator("allergens", mode="before")
    @classmethod
    def _split_codes(cls, value):
        if isinstance(value, str):
            return [c for c in value if not c.isspace() and c != ","]
        return value

    @computed_field
    @property
    def hash(self) -> str:
        return _sha256(
            f"{self.type.value}|{self.title}|{''.join(self.allergens)}"
            f"|{self.price_cents}|{self.date.isoformat()}"
        )


_SLOTS = {
    MenuType.menu1: "menu1",
    MenuType.menu2: "menu2",
    MenuType.menu3: "menu3",
    MenuType.soup_and_salad: "soup_and_salad",
}


class Day(BaseModel):
    date: dt.date
    menu1: Optional[Menu] = None
    menu2: Optional[Menu] = None
    menu3: Optional[Menu] = None
    soup_and_salad: Optional[Menu] = None

    @model_validator(mode="after")
    def _check_slots(self) -> "Day":
        for slot, field in _SLOTS.items():
            menu = getattr(self, field)
            if menu is None:
                continue
            if menu.type != slot:
                raise ValueError(f"Menu of type {menu.type.value} placed in {field}")
            if menu.date != self.date:
                raise ValueError(f"Menu dated {menu.date} placed on {self.date}")
        return self

    @property
    def menus(self) -> list[Menu]:
        return [
            menu
            for menu in (getattr(self, field) for field in _SLOTS.values())
            if menu is not None
        ]

    @classmethod
    def from_menus(cls, date: dt.date, menus: list[Menu]) -> "Day":
        slots = {_SLOTS[menu.type]: menu for menu in menus}
        return cls(date=date, **slots)


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(..., repr=False)
