import logging
from typing import Callable, Iterable, Optional

import chess

from xewali.book import OpeningBook
from xewali.config import CONFIG
from xewali.core.board import ChessBoard
from xewali.core.evaluator import Evaluator
from xewali.core.search import SearchEngine, SearchInfo, SearchResult
from xewali.core.timeman import ClockState, TimeManager
from xewali.core.transposition import TranspositionTable

logger = logging.getLogger(__name__)


class Engine:
    """Game state plus the search, as seen by a protocol front end."""

    def __init__(self, depth: Optional[int] = None, book: Optional[OpeningBook] = None):
        self.board = ChessBoard()
        self.evaluator = Evaluator()
        self.time_manager = TimeManager()
        if book is None and CONFIG.book.enabled and CONFIG.book.path:
            book = OpeningBook.load(CONFIG.book.path)
        self.book = book
        self.own_book = True
        self.search = SearchEngine(self.evaluator, depth=depth, book=book)
        self.last_score = 0

    def reset(self):
        """New game: start position, empty transposition table."""
        self.search.stop()
        self.board.reset()
        self.search.reset()
        self.last_score = 0

    def set_position(self, fen: Optional[str] = None, moves: Iterable[str] = ()) -> bool:
        return self.board.set_position(fen, moves)

    def _limits(self, clock: Optional[ClockState]):
        clock = clock or ClockState()
        budget = self.time_manager.allocate(clock, self.board.board.fullmove_number)
        if budget is not None:
            logger.debug("time budget %d ms", budget.limit_ms)
        return clock.depth, budget

    def think(self, clock: Optional[ClockState] = None,
              callback: Optional[Callable[[SearchInfo], None]] = None) -> SearchResult:
        max_depth, budget = self._limits(clock)
        result = self.search.search_best_move(
            self.board.board, max_depth, budget, callback, self.board.game_hashes())
        if not result.from_book:
            self.last_score = result.score
        return result

    def choose_move(self, clock: Optional[ClockState] = None,
                    callback: Optional[Callable[[SearchInfo], None]] = None) -> Optional[chess.Move]:
        """Best move for the current position; None only when there is no legal move."""
        return self.think(clock, callback).move

    def start(self, clock: Optional[ClockState] = None,
              callback: Optional[Callable[[SearchInfo], None]] = None,
              on_done: Optional[Callable[[SearchResult], None]] = None) -> bool:
        """Like think(), but on a background thread; stop() ends it early."""
        max_depth, budget = self._limits(clock)

        def done(result: SearchResult):
            if not result.from_book:
                self.last_score = result.score
            if on_done:
                on_done(result)

        return self.search.start_search(
            self.board.board, max_depth, budget, callback, done, self.board.game_hashes())

    def stop(self):
        self.search.stop()

    def evaluate(self) -> int:
        """Static evaluation of the current position, side to move's view."""
        return self.evaluator.evaluate(self.board.board)

    def set_hash_size(self, size_mb: int):
        self.search.tt = TranspositionTable(size_mb=max(1, size_mb), replacement=CONFIG.tt.replacement)

    def set_book(self, path: Optional[str]):
        if self.book is not None:
            self.book.close()
        self.book = OpeningBook.load(path) if path else None
        self.use_book(self.own_book)

    def use_book(self, enabled: bool):
        self.own_book = enabled
        self.search.book = self.book if enabled else None

    def set_book_seed(self, seed: int):
        self.search.rng.seed(seed)
