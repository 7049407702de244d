"""Generation counters so only the latest response for a fetch is applied."""

from collections.abc import Hashable
from dataclasses import dataclass


@dataclass(frozen=True)
class Ticket:
    """Issued when a fetch starts. Presented again when its response arrives."""

    category: str
    generation: int
    key: Hashable


class RequestTracker:
    """Last-write-wins by key, per fetch category.

    Every ``issue()`` bumps the category's generation. A response is applied
    only if its ticket is still the newest for that category and was issued
    for the key currently being displayed.
    """

    def __init__(self) -> None:
        self._generations: dict[str, int] = {}
        self._keys: dict[str, Hashable] = {}

    def issue(self, category: str, key: Hashable) -> Ticket:
        generation = self._generations.get(category, 0) + 1
        self._generations[category] = generation
        self._keys[category] = key
        return Ticket(category=category, generation=generation, key=key)

    def accepts(self, ticket: Ticket) -> bool:
        return (
            self._generations.get(ticket.category) == ticket.generation
            and self._keys.get(ticket.category) == ticket.key
        )

    def invalidate(self, category: str) -> None:
        """Make every outstanding ticket for ``category`` stale."""
        self._generations[category] = self._generations.get(category, 0) + 1
        self._keys.pop(category, None)
