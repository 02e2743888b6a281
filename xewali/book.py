"""
Opening book.

Two formats are understood:

* Polyglot ``.bin`` books, read through ``chess.polyglot``.
* Plain text: one game per line as UCI moves from the starting position
  (``e2e4 e7e5 g1f3 ...``). Every position along each line maps to the set of
  moves played from it. A move that does not parse ends that line.

A book that cannot be read is logged and behaves as an empty book.
"""

import logging
import os
from collections import defaultdict
from typing import Dict, Optional, Set

import chess
import chess.polyglot

from xewali.core.board import zobrist_key

logger = logging.getLogger(__name__)


class OpeningBook:
    def __init__(self):
        self.entries: Dict[int, Set[chess.Move]] = defaultdict(set)
        self.path: Optional[str] = None
        self._reader: Optional[chess.polyglot.MemoryMappedReader] = None

    @classmethod
    def load(cls, path: str) -> "OpeningBook":
        book = cls()
        book.path = path
        if not os.path.exists(path):
            logger.warning("opening book %s not found, playing without book", path)
            return book
        try:
            if path.endswith(".bin"):
                book._reader = chess.polyglot.open_reader(path)
            else:
                book._load_text(path)
        except (OSError, ValueError) as e:
            logger.warning("could not read opening book %s: %s", path, e)
            book.close()
            book.entries.clear()
        else:
            logger.info("loaded opening book %s", path)
        return book

    def _load_text(self, path: str) -> None:
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                board = chess.Board()
                for move_str in line.split():
                    try:
                        move = board.parse_uci(move_str)
                    except ValueError:
                        logger.debug("book line %d: stopping at %r", lineno, move_str)
                        break
                    self.entries[zobrist_key(board)].add(move)
                    board.push(move)

    def lookup(self, board: chess.Board) -> Set[chess.Move]:
        """Book moves for ``board``; empty when the position is out of book."""
        if self._reader is not None:
            return {entry.move for entry in self._reader.find_all(board)}
        return set(self.entries.get(zobrist_key(board), ()))

    def close(self):
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def __len__(self) -> int:
        """Number of book positions (text books only)."""
        return len(self.entries)

    def __bool__(self) -> bool:
        return self._reader is not None or bool(self.entries)
