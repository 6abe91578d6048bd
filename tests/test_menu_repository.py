from datetime import date, datetime

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import MenuRow, MenuType
from repositories import MenuRepository
from schemas import Day, Menu


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def _day(day: date, *slots: MenuType, title: str = "Schnitzel") -> Day:
    return Day.from_menus(
        day,
        [
            Menu(type=slot, title=f"{title} {slot.value}", allergens="ACG", price_cents=690, date=day)
            for slot in slots
        ],
    )


def test_read_is_half_open_and_ascending() -> None:
    with Session(_engine()) as session:
        repo = MenuRepository(session)
        repo.insert(
            [
                _day(date(2025, 3, 12), MenuType.menu1),
                _day(date(2025, 3, 10), MenuType.menu1, MenuType.soup_and_salad),
                _day(date(2025, 3, 11), MenuType.menu2),
            ]
        )

        days = repo.read(date(2025, 3, 10), date(2025, 3, 12))

    assert [d.date for d in days] == [date(2025, 3, 10), date(2025, 3, 11)]
    assert [m.type for m in days[0].menus] == [MenuType.menu1, MenuType.soup_and_salad]
    assert days[0].menu1.allergens == ["A", "C", "G"]
    assert days[1].menu2.price_cents == 690


def test_insert_overwrites_existing_day() -> None:
    engine = _engine()
    with Session(engine) as session:
        repo = MenuRepository(session)
        repo.insert([_day(date(2025, 3, 10), MenuType.menu1)], fetched_at=datetime(2025, 3, 9))
        repo.insert(
            [_day(date(2025, 3, 10), MenuType.menu1, title="Gulasch")],
            fetched_at=datetime(2025, 3, 10),
        )

        days = repo.read(date(2025, 3, 10), date(2025, 3, 11))
        rows = session.scalar(select(func.count(MenuRow.id)))
        fetched_at = session.scalar(select(MenuRow.fetched_at))

    assert rows == 1
    assert days[0].menu1.title == "Gulasch menu1"
    assert fetched_at == datetime(2025, 3, 10)


def test_insert_drops_slots_missing_from_new_day() -> None:
    with Session(_engine()) as session:
        repo = MenuRepository(session)
        repo.insert([_day(date(2025, 3, 10), MenuType.menu1, MenuType.menu2, MenuType.menu3)])

        written = repo.insert([_day(date(2025, 3, 10), MenuType.menu2)])
        day = repo.read(date(2025, 3, 10), date(2025, 3, 11))[0]

    assert written == 1
    assert day.menu1 is None
    assert day.menu3 is None
    assert day.menu2 is not None


def test_available_dates_are_ascending_and_distinct() -> None:
    with Session(_engine()) as session:
        repo = MenuRepository(session)
        repo.insert(
            [
                _day(date(2025, 3, 14), MenuType.menu1, MenuType.menu2),
                _day(date(2025, 3, 10), MenuType.menu3),
            ]
        )

        assert repo.available_dates() == [date(2025, 3, 10), date(2025, 3, 14)]
