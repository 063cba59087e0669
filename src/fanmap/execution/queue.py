"""Task queue - the immutable, indexed sequence of submitted work items."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, overload


@dataclass(frozen=True, slots=True)
class WorkItem:
    """One input paired with its original submission index."""

    index: int
    payload: Any


class TaskQueue(Sequence[WorkItem]):
    """Ordered work items, indexed once at submission time.

    The queue copies its input, so later mutation of the caller's list does
    not change what gets dispatched.

    Example:
        >>> queue = TaskQueue([4, 9, 16])
        >>> queue[2]
        WorkItem(index=2, payload=16)
        >>> queue.payloads()
        (4, 9, 16)
    """

    __slots__ = ("_items",)

    def __init__(self, payloads: Iterable[Any]):
        self._items: tuple[WorkItem, ...] = tuple(
            WorkItem(index=i, payload=p) for i, p in enumerate(payloads)
        )

    @overload
    def __getitem__(self, index: int) -> WorkItem: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[WorkItem]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self._items)

    def payloads(self) -> tuple[Any, ...]:
        """Payloads in submission order."""
        return tuple(item.payload for item in self._items)

    def __repr__(self) -> str:
        return f"TaskQueue(size={len(self._items)})"


__all__ = ["WorkItem", "TaskQueue"]
