"""
Append-only logs for prompt history and change log entries.
"""
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, TypeVar

T = TypeVar("T")


class AppendOnlyLog(Generic[T]):
    """A list that can only grow. Entries are never reordered or removed."""

    def __init__(self, entries: Iterable[T] = ()):
        self._entries: List[T] = list(entries)

    def append(self, entry: T) -> T:
        self._entries.append(entry)
        return entry

    def __iter__(self) -> Iterator[T]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> T:
        return self._entries[index]

    def to_payload(self, serialize: Callable[[T], Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Serialize entries for persistence (timestamps become ISO strings)."""
        serialize = serialize or (lambda entry: entry.to_dict())
        return [serialize(entry) for entry in self._entries]
