"""
Ordered, id-deduplicated message sequence.
"""

from operator import attrgetter
from typing import Iterable, Iterator, Optional

from smartadmin.models.message import Message


def merge(*batches: Iterable[Message]) -> list[Message]:
    """Concatenate batches, keep the first copy of each id, stable-sort by timestamp."""
    seen: set[str] = set()
    unique: list[Message] = []
    for batch in batches:
        for message in batch:
            if message.id in seen:
                continue
            seen.add(message.id)
            unique.append(message)
    unique.sort(key=attrgetter("timestamp"))
    return unique


class Timeline:
    """Incrementally maintained timeline.

    Live messages arrive roughly in order, so add() scans back from the tail
    instead of re-sorting. Equal timestamps keep arrival order.
    """

    def __init__(self, messages: Iterable[Message] = ()):
        self._items: list[Message] = []
        self._ids: set[str] = set()
        for message in merge(messages):
            self._items.append(message)
            self._ids.add(message.id)

    def add(self, message: Message) -> bool:
        """Insert by timestamp. Returns False if the id is already present."""
        if message.id in self._ids:
            return False
        i = len(self._items)
        while i > 0 and self._items[i - 1].timestamp > message.timestamp:
            i -= 1
        self._items.insert(i, message)
        self._ids.add(message.id)
        return True

    def extend(self, messages: Iterable[Message]) -> int:
        return sum(1 for message in messages if self.add(message))

    def snapshot(self) -> list[Message]:
        return list(self._items)

    @property
    def oldest(self) -> Optional[Message]:
        return self._items[0] if self._items else None

    @property
    def newest(self) -> Optional[Message]:
        return self._items[-1] if self._items else None

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._items))
