"""Repetition tracking for the game plus the line currently being searched."""

from collections import Counter
from contextlib import contextmanager
from typing import Iterable, Iterator, List


class PositionHistory:
    """
    Zobrist keys of the positions seen so far.

    ``game`` holds the positions played before the search root and is set by
    the caller before each search. ``path`` is the search-local stack: the
    search pushes a node's key before descending into its children and pops
    it on the way back, so after any call returns the stack has its previous
    length again.
    """

    def __init__(self) -> None:
        self._game: Counter = Counter()
        self.path: List[int] = []

    def set_game(self, keys: Iterable[int]) -> None:
        self._game = Counter(keys)
        self.path.clear()

    def push(self, key: int) -> None:
        self.path.append(key)

    def pop(self) -> int:
        return self.path.pop()

    @contextmanager
    def visit(self, key: int) -> Iterator[None]:
        """Keep ``key`` on the path for the duration of the block."""
        self.path.append(key)
        try:
            yield
        finally:
            self.path.pop()

    def occurrences(self, key: int) -> int:
        return self._game[key] + self.path.count(key)

    def is_repetition(self, key: int) -> bool:
        """True when reaching ``key`` again should be scored as a draw.

        That is the third occurrence overall (threefold), or already the
        second one when the earlier occurrence lies on the search path.
        """
        in_path = self.path.count(key)
        return in_path > 0 or self._game[key] + in_path >= 2

    def __len__(self) -> int:
        return len(self.path)
