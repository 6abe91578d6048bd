"""Pluggable upstream sources for billing statements and menus.

The HTTP clients for the two services live outside this package; anything
that satisfies ``BillingSource`` / ``MenuSource`` can be injected. The fixture
sources replay recorded responses so tests and offline runs never touch the
network.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union

from pydantic import TypeAdapter, ValidationError

from errors import UpstreamFetchError
from periods import month_start
from schemas import BillingMonth, Day


class BillingSource(Protocol):
    async def fetch_month(self, month: date) -> Optional[BillingMonth]:
        """Return the statement for ``month`` or None when no history exists."""
        ...


class MenuSource(Protocol):
    async def fetch_days(self, start: date, end: date) -> list[Day]:
        ...


_MONTHS = TypeAdapter(list[BillingMonth])
_DAYS = TypeAdapter(list[Day])


def _load_json(source: Union[str, Path, list]) -> list:
    if isinstance(source, list):
        return source
    try:
        return json.loads(Path(source).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise UpstreamFetchError(f"Cannot read recorded responses from {source}") from exc


class FixtureBillingSource:
    def __init__(self, recorded: Union[str, Path, list, Mapping[date, BillingMonth]]) -> None:
        if isinstance(recorded, Mapping):
            months = list(recorded.values())
        else:
            try:
                months = _MONTHS.validate_python(_load_json(recorded))
            except ValidationError as exc:
                raise UpstreamFetchError("Recorded billing months are malformed") from exc
        self._months = {m.month: m for m in months}
        self.calls: list[date] = []

    async def fetch_month(self, month: date) -> Optional[BillingMonth]:
        key = month_start(month)
        self.calls.append(key)
        return self._months.get(key)


class FixtureMenuSource:
    def __init__(self, recorded: Union[str, Path, list]) -> None:
        try:
            days = _DAYS.validate_python(_load_json(recorded))
        except ValidationError as exc:
            raise UpstreamFetchError("Recorded menu days are malformed") from exc
        self._days = sorted(days, key=lambda d: d.date)
        self.calls: list[tuple[date, date]] = []

    async def fetch_days(self, start: date, end: date) -> list[Day]:
        self.calls.append((start, end))
        return [d for d in self._days if start <= d.date < end]
