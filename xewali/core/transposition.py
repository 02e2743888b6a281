"""Fixed-capacity transposition table.

Entries live in a preallocated slot array indexed by ``key % capacity``, so
the table never grows past its configured size. Positions are identified by
their 64-bit Zobrist key only; two different positions sharing a key will
share an entry. That is accepted: a collision can cost move quality, but a
stored best move is always checked against the legal move list before use.

Usage (example):

    tt = TranspositionTable(max_entries=1 << 16)
    tt.store(key, depth=3, score=123, bound=TT_EXACT, best_move=move)
    entry = tt.lookup(key)
    if entry is not None:
        print(entry.depth, entry.score, entry.bound, entry.best_move)
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional

import chess

TT_EXACT = 0
TT_LOWER = 1  # score is a lower bound (fail high)
TT_UPPER = 2  # score is an upper bound (fail low)

REPLACE_DEPTH = "depth"
REPLACE_ALWAYS = "always"

# Rough size of one entry with its slot, used to turn megabytes into slots.
ENTRY_BYTES = 128


@dataclass
class TTEntry:
    key: int
    depth: int
    score: int
    bound: int
    best_move: Optional[chess.Move]
    age: int = 0

    def __iter__(self):
        return iter((self.key, self.depth, self.score, self.bound, self.best_move))


class TranspositionTable:
    """Transposition table keyed by Zobrist hash.

    Methods:
      - lookup(key) -> Optional[TTEntry]
      - store(key, depth, score, bound, best_move)
      - new_search()  (marks older entries as stale)
      - clear()

    Replacement policy ``"depth"`` keeps the deeper of two entries competing
    for a slot unless the stored one is stale; ``"always"`` overwrites.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        size_mb: int = 64,
        replacement: str = REPLACE_DEPTH,
    ):
        if replacement not in (REPLACE_DEPTH, REPLACE_ALWAYS):
            raise ValueError(f"unknown replacement policy: {replacement!r}")
        if max_entries is None:
            max_entries = size_mb * 1024 * 1024 // ENTRY_BYTES
        self.max_entries = max(1, int(max_entries))
        self.replacement = replacement
        self.table: List[Optional[TTEntry]] = [None] * self.max_entries
        self.age = 0
        self._used = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self.max_entries

    def lookup(self, key: int) -> Optional[TTEntry]:
        entry = self.table[key % self.max_entries]
        if entry is None or entry.key != key:
            return None
        return entry

    def store(self, key: int, depth: int, score: int, bound: int,
              best_move: Optional[chess.Move]) -> bool:
        """Offer an entry to the table. Returns True if it was written."""
        idx = key % self.max_entries
        with self._lock:
            current = self.table[idx]
            if current is not None and not self._should_replace(current, key, depth):
                return False
            if current is None:
                self._used += 1
            self.table[idx] = TTEntry(key, depth, score, bound, best_move, self.age)
            return True

    def _should_replace(self, current: TTEntry, key: int, depth: int) -> bool:
        if self.replacement == REPLACE_ALWAYS:
            return True
        if current.key == key or current.age != self.age:
            return True
        return depth >= current.depth

    def new_search(self) -> None:
        """Start a new search generation; entries from older ones become replaceable."""
        self.age += 1

    def clear(self):
        with self._lock:
            self.table = [None] * self.max_entries
            self._used = 0
            self.age = 0

    def __len__(self) -> int:
        return self._used
