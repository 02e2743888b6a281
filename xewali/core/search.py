import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import chess

from xewali.config import CONFIG, SearchConfig
from xewali.core.board import applied, legal_moves, position_hashes, zobrist_key
from xewali.core.evaluator import Evaluator
from xewali.core.history import PositionHistory
from xewali.core.ordering import MoveOrderer, rank_root_moves
from xewali.core.timeman import TimeBudget
from xewali.core.transposition import TT_EXACT, TT_LOWER, TT_UPPER, TranspositionTable

logger = logging.getLogger(__name__)

INF = 1000000
MATE_SCORE = 900000
# Anything beyond this is a forced mate; mate distance never gets near 1000 plies.
MATE_BOUND = MATE_SCORE - 1000


def is_mate_score(score: int) -> bool:
    return abs(score) >= MATE_BOUND


def score_to_tt(score: int, ply: int) -> int:
    """Mate scores are stored as distance from the node, not from the root."""
    if score >= MATE_BOUND:
        return score + ply
    if score <= -MATE_BOUND:
        return score - ply
    return score


def score_from_tt(score: int, ply: int) -> int:
    if score >= MATE_BOUND:
        return score - ply
    if score <= -MATE_BOUND:
        return score + ply
    return score


@dataclass
class SearchInfo:
    depth: int
    score: int
    move: Optional[chess.Move]
    nodes: int
    elapsed_ms: int
    pv: List[chess.Move] = field(default_factory=list)


@dataclass
class SearchResult:
    move: Optional[chess.Move]
    score: int = 0
    depth: int = 0
    nodes: int = 0
    pv: List[chess.Move] = field(default_factory=list)
    from_book: bool = False


class SearchContext:
    """
    State of one search call: node counter and the abort flag.

    The deadline is checked on every node, the stop event every
    ``check_interval`` nodes. Once ``aborted`` is set every frame returns
    immediately without storing anything.
    """

    def __init__(
        self,
        budget: Optional[TimeBudget] = None,
        stop_event: Optional[threading.Event] = None,
        check_interval: int = 64,
    ):
        self.budget = budget
        self.stop_event = stop_event
        self.check_interval = max(1, check_interval)
        self.nodes = 0
        self.aborted = False

    def poll(self) -> bool:
        """Check the deadline and the stop event now; sets ``aborted``."""
        if not self.aborted:
            if self.budget is not None and self.budget.expired():
                self.aborted = True
            elif self.stop_event is not None and self.stop_event.is_set():
                self.aborted = True
        return self.aborted

    def tick(self) -> bool:
        self.nodes += 1
        if self.aborted:
            return True
        if self.budget is not None and self.budget.expired():
            self.aborted = True
        elif self.nodes % self.check_interval == 0:
            self.poll()
        return self.aborted


class SearchEngine:
    def __init__(
        self,
        evaluator: Optional[Evaluator] = None,
        depth: Optional[int] = None,
        cfg: Optional[SearchConfig] = None,
        tt: Optional[TranspositionTable] = None,
        book=None,
        rng: Optional[random.Random] = None,
    ):
        self.cfg = cfg or CONFIG.search
        self.evaluator = evaluator or Evaluator()
        self.max_depth = depth or self.cfg.max_depth
        self.tt = tt or TranspositionTable(
            max_entries=CONFIG.tt.max_entries,
            size_mb=CONFIG.tt.hash_size_mb,
            replacement=CONFIG.tt.replacement,
        )
        self.history = PositionHistory()
        self.orderer = MoveOrderer(self.evaluator.piece_values)
        self.book = book
        self.rng = rng or random.Random(CONFIG.book.seed)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ctx = SearchContext(check_interval=self.cfg.node_check_interval)
        self.nodes = 0

    def reset(self):
        """Forget everything learned in the current game."""
        self.tt.clear()
        self.history.set_game(())

    def get_book_move(self, board: chess.Board, moves: Iterable[chess.Move]) -> Optional[chess.Move]:
        """Pick uniformly among the legal book moves for this position."""
        if self.book is None:
            return None
        book_moves = self.book.lookup(board)
        candidates = sorted((m for m in moves if m in book_moves), key=lambda m: m.uci())
        if not candidates:
            return None
        move = self.rng.choice(candidates)
        logger.info("book move %s (%d candidates)", move.uci(), len(candidates))
        return move

    def search_best_move(
        self,
        board: chess.Board,
        max_depth: Optional[int] = None,
        budget: Optional[TimeBudget] = None,
        callback: Optional[Callable[[SearchInfo], None]] = None,
        history: Optional[Iterable[int]] = None,
    ) -> SearchResult:
        """
        Choose a move for ``board`` by iterative deepening.

        ``history`` holds the keys of the positions played before ``board``;
        it defaults to the board's own move stack. The caller's board is
        never modified. Returns the result of the last completed iteration.
        """
        self._stop_event.clear()
        return self._run(board, max_depth, budget, callback, history)

    def _run(self, board, max_depth, budget, callback, history) -> SearchResult:
        start = time.monotonic()
        max_depth = max_depth or self.max_depth
        moves = legal_moves(board)
        if not moves:
            return SearchResult(None)

        book_move = self.get_book_move(board, moves)
        if book_move is not None:
            return SearchResult(book_move, pv=[book_move], from_book=True)

        if len(moves) == 1:
            return SearchResult(moves[0], pv=[moves[0]])

        search_board = board.copy()
        self.history.set_game(history if history is not None else position_hashes(board))
        self.tt.new_search()
        ctx = SearchContext(budget, self._stop_event, self.cfg.node_check_interval)
        self._ctx = ctx

        tt_move = None
        if self.cfg.use_tt:
            entry = self.tt.lookup(zobrist_key(search_board))
            if entry is not None:
                tt_move = entry.best_move
        result = SearchResult(self.orderer.order(search_board, moves, tt_move)[0])
        root_scores: Optional[Dict[chess.Move, int]] = None

        for depth in range(1, max_depth + 1):
            if self._stop_event.is_set():
                break
            if depth > 1 and budget is not None and not budget.can_start_iteration():
                break

            move, score, scores = self._search_root(search_board, depth, moves, root_scores, tt_move)
            if ctx.aborted or move is None:
                logger.debug("depth %d aborted after %d nodes", depth, ctx.nodes)
                break

            root_scores, tt_move = scores, move
            moves = rank_root_moves(scores)
            pv = self._get_pv_line(search_board, move, depth)
            result = SearchResult(move, score, depth, ctx.nodes, pv)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.debug("depth %d score %d move %s nodes %d", depth, score, move.uci(), ctx.nodes)
            if callback:
                callback(SearchInfo(depth, score, move, ctx.nodes, elapsed_ms, pv))

            if self.cfg.stop_on_mate and is_mate_score(score):
                break

        self.nodes = result.nodes = ctx.nodes
        return result

    def start_search(
        self,
        board: chess.Board,
        max_depth: Optional[int] = None,
        budget: Optional[TimeBudget] = None,
        callback: Optional[Callable[[SearchInfo], None]] = None,
        on_done: Optional[Callable[[SearchResult], None]] = None,
        history: Optional[Iterable[int]] = None,
    ) -> bool:
        """Run the search on a background thread. Returns False if one is already running."""
        if self._thread and self._thread.is_alive():
            return False
        self._stop_event.clear()
        board = board.copy()
        if history is not None:
            history = tuple(history)

        def worker():
            result = self._run(board, max_depth, budget, callback, history)
            if on_done:
                on_done(result)

        self._thread = threading.Thread(target=worker, daemon=True)
        self._thread.start()
        return True

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=0.2)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the background search finishes. True if it did."""
        if self._thread:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return True

    def is_searching(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _get_pv_line(self, board: chess.Board, first: chess.Move, depth: int) -> List[chess.Move]:
        pv_moves = [first]
        curr_board = board.copy(stack=False)
        curr_board.push(first)

        # Avoid infinite loops (max depth or repetition)
        seen = {zobrist_key(curr_board)}

        for _ in range(depth - 1):
            entry = self.tt.lookup(zobrist_key(curr_board))
            if not entry or not entry.best_move:
                break

            move = entry.best_move
            if not curr_board.is_legal(move):
                break

            pv_moves.append(move)
            curr_board.push(move)

            key = zobrist_key(curr_board)
            if key in seen:
                break
            seen.add(key)

        return pv_moves

    def _search_root(
        self,
        board: chess.Board,
        depth: int,
        moves: List[chess.Move],
        root_scores: Optional[Dict[chess.Move, int]],
        tt_move: Optional[chess.Move],
    ) -> Tuple[Optional[chess.Move], int, Dict[chess.Move, int]]:
        """
        One full-width iteration at the root, keeping every move's score.

        Only the best move's score is exact. A move that fails low gets the
        alpha it failed against, an upper bound, so ties among those are
        broken by the order the moves were searched in (see rank_root_moves).
        """
        ctx = self._ctx
        key = zobrist_key(board)
        alpha, beta = -INF, INF
        best_move, best_score = None, -INF
        scores: Dict[chess.Move, int] = {}

        with self.history.visit(key):
            for move in self.orderer.order(board, moves, tt_move, root_scores):
                if ctx.poll():
                    return None, 0, scores
                with applied(board, move) as child:
                    if child is None:
                        continue
                    score = -self._negamax(child, depth - 1, -beta, -alpha, 1)
                if ctx.aborted:
                    return None, 0, scores
                scores[move] = score
                if score > best_score:
                    best_score, best_move = score, move
                if score > alpha:
                    alpha = score

        if self.cfg.use_tt and best_move is not None:
            self.tt.store(key, depth, score_to_tt(best_score, 0), TT_EXACT, best_move)
        return best_move, best_score, scores

    def _negamax(self, board: chess.Board, depth: int, alpha: int, beta: int, ply: int) -> int:
        ctx = self._ctx
        if ctx.tick():
            return 0

        key = zobrist_key(board)
        if ply > 0 and self.history.is_repetition(key):
            return 0

        alpha_orig = alpha
        tt_move = None
        if self.cfg.use_tt:
            entry = self.tt.lookup(key)
            if entry is not None:
                tt_move = entry.best_move
                if entry.depth >= depth:
                    score = score_from_tt(entry.score, ply)
                    if entry.bound == TT_EXACT:
                        return max(alpha, min(beta, score))
                    if entry.bound == TT_LOWER and score >= beta:
                        return beta
                    if entry.bound == TT_UPPER and score <= alpha:
                        return alpha

        if depth <= 0:
            if self.cfg.use_quiescence:
                return self.quiescence(board, alpha, beta, ply=ply)
            return self.evaluator.evaluate(board)

        moves = legal_moves(board)
        if not moves:
            if board.is_check():
                return -MATE_SCORE + ply
            return 0

        best_move = None
        with self.history.visit(key):
            for move in self.orderer.order(board, moves, tt_move):
                with applied(board, move) as child:
                    if child is None:
                        continue
                    score = -self._negamax(child, depth - 1, -beta, -alpha, ply + 1)
                if ctx.aborted:
                    return 0

                if score > alpha:
                    alpha = score
                    best_move = move
                if alpha >= beta:
                    if self.cfg.use_tt:
                        self.tt.store(key, depth, score_to_tt(beta, ply), TT_LOWER, move)
                    return beta

        if self.cfg.use_tt:
            bound = TT_EXACT if alpha > alpha_orig else TT_UPPER
            self.tt.store(key, depth, score_to_tt(alpha, ply), bound, best_move)
        return alpha

    def quiescence(
        self,
        board: chess.Board,
        alpha: int,
        beta: int,
        depth_limit: Optional[int] = None,
        ply: int = 0,
        qs_depth: int = 0,
        target: Optional[chess.Square] = None,
    ) -> int:
        """
        Resolve captures and promotions until the position is quiet.

        The side to move may always stand pat on the static evaluation.
        ``target`` restricts the search to captures on one square, which is
        how the recapture-only mode follows a single exchange.
        """
        ctx = self._ctx
        if ctx.tick():
            return 0
        if depth_limit is None:
            depth_limit = self.cfg.q_max_depth

        if board.is_check() and not any(board.generate_legal_moves()):
            return -MATE_SCORE + ply

        stand_pat = self.evaluator.evaluate(board)
        if qs_depth >= depth_limit:
            return stand_pat
        if stand_pat >= beta:
            return beta
        if stand_pat > alpha:
            alpha = stand_pat

        moves = [m for m in board.generate_legal_moves() if m.promotion or board.is_capture(m)]
        if target is not None:
            moves = [m for m in moves if m.to_square == target]

        for move in self.orderer.order(board, moves):
            next_target = move.to_square if self.cfg.q_recapture_only else None
            with applied(board, move) as child:
                if child is None:
                    continue
                score = -self.quiescence(child, -beta, -alpha, depth_limit, ply + 1, qs_depth + 1, next_target)
            if ctx.aborted:
                return 0

            if score >= beta:
                return beta
            if score > alpha:
                alpha = score

        return alpha
