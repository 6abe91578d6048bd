import logging
from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["Signal", "ChangeAction", "CollectionChange", "ObservableList"]


class Signal:
    """Explicit subscription channel.

    Every ``emit`` reaches every subscriber in subscription order; nothing is
    coalesced. A subscriber that raises is logged and skipped so it cannot
    break the code that emitted.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Callable[..., Any]] = []

    def subscribe(self, handler: Callable[..., Any]) -> Callable[[], None]:
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: Callable[..., Any]) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def emit(self, *args: Any) -> None:
        for handler in list(self._subscribers):
            try:
                handler(*args)
            except Exception:
                logger.exception(f"signal_handler_failed: signal={self.name}")

    def __len__(self) -> int:
        return len(self._subscribers)


class ChangeAction(str, Enum):
    reset = "reset"
    insert = "insert"
    replace = "replace"


@dataclass(frozen=True)
class CollectionChange(Generic[T]):
    action: ChangeAction
    index: Optional[int]
    items: tuple[T, ...]


class ObservableList(Sequence[T]):
    """Ordered collection that announces every mutation on ``changed``.

    Consumers read it like a sequence and subscribe to ``changed``; only the
    owning cache calls ``reset`` and ``upsert``.
    """

    def __init__(
        self,
        name: str,
        key: Callable[[T], Hashable],
        sort_key: Callable[[T], Any],
        reverse: bool = False,
    ) -> None:
        self.changed = Signal(f"{name}.changed")
        self._key = key
        self._sort_key = sort_key
        self._reverse = reverse
        self._items: list[T] = []

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def snapshot(self) -> list[T]:
        return list(self._items)

    def find(self, key: Hashable) -> Optional[T]:
        for item in self._items:
            if self._key(item) == key:
                return item
        return None

    def reset(self, items: Sequence[T]) -> None:
        self._items = sorted(items, key=self._sort_key, reverse=self._reverse)
        self.changed.emit(CollectionChange(ChangeAction.reset, None, tuple(self._items)))

    def upsert(self, item: T) -> None:
        key = self._key(item)
        for index, current in enumerate(self._items):
            if self._key(current) == key:
                self._items[index] = item
                self.changed.emit(CollectionChange(ChangeAction.replace, index, (item,)))
                return

        keys = [self._ordering(i) for i in self._items]
        index = bisect_left(keys, self._ordering(item))
        self._items.insert(index, item)
        self.changed.emit(CollectionChange(ChangeAction.insert, index, (item,)))

    def _ordering(self, item: T) -> Any:
        value = self._sort_key(item)
        if self._reverse:
            return _Reversed(value)
        return value


class _Reversed:
    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __lt__(self, other: "_Reversed") -> bool:
        return other.value < self.value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Reversed) and other.value == self.value
