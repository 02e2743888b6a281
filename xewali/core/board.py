"""Board adapter over python-chess.

The search only talks to the board through the functions in this module:
legal move generation, applying a move, check detection and the 64-bit
polyglot Zobrist key. ``ChessBoard`` keeps the real game (position plus move
history) that the controller sets before each search.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional, Tuple

import chess
import chess.polyglot

logger = logging.getLogger(__name__)


def legal_moves(board: chess.Board) -> List[chess.Move]:
    return list(board.legal_moves)


def is_in_check(board: chess.Board) -> bool:
    return board.is_check()


def zobrist_key(board: chess.Board) -> int:
    """64-bit Zobrist key of the position."""
    return chess.polyglot.zobrist_hash(board)


def apply(board: chess.Board, move: chess.Move) -> Optional[chess.Board]:
    """Return a new board with ``move`` played, leaving ``board`` untouched.

    An illegal move is a caller bug: it trips an assertion, and when
    assertions are disabled (``python -O``) the move is logged and skipped.
    """
    legal = board.is_legal(move)
    assert legal, f"illegal move {move.uci()} in {board.fen()}"
    if not legal:
        logger.error("skipping illegal move %s in %s", move.uci(), board.fen())
        return None
    child = board.copy(stack=False)
    child.push(move)
    return child


@contextmanager
def applied(board: chess.Board, move: chess.Move) -> Iterator[Optional[chess.Board]]:
    """Play ``move`` on ``board`` for the duration of the block.

    The move is always taken back on exit, including when the block returns
    early or raises. Yields None (and changes nothing) for an illegal move.
    """
    legal = board.is_legal(move)
    assert legal, f"illegal move {move.uci()} in {board.fen()}"
    if not legal:
        logger.error("skipping illegal move %s in %s", move.uci(), board.fen())
        yield None
        return
    board.push(move)
    try:
        yield board
    finally:
        board.pop()


def position_hashes(board: chess.Board) -> Tuple[int, ...]:
    """Keys of every position played before the current one, oldest first."""
    replay = board.root()
    keys = []
    for move in board.move_stack:
        keys.append(zobrist_key(replay))
        replay.push(move)
    return tuple(keys)


def color_swapped(board: chess.Board) -> chess.Board:
    """Mirror the board and swap colors, keeping the side to move."""
    swapped = board.mirror()
    swapped.turn = board.turn
    swapped.ep_square = None
    return swapped


class ChessBoard:
    def __init__(self, fen: str = None):
        """Initialize from FEN or the standard starting position."""
        self.board = chess.Board(fen) if fen else chess.Board()
        self.move_history: List[str] = []

    def reset(self):
        """Reset to the initial position."""
        self.board.reset()
        self.move_history.clear()

    def set_position(self, fen: Optional[str] = None, moves: Iterable[str] = ()) -> bool:
        """Set the game from a FEN (or the start position) plus UCI moves.

        Replaying stops at the first unparsable or illegal move; returns
        False in that case. An invalid FEN leaves the board unchanged.
        """
        try:
            board = chess.Board(fen) if fen else chess.Board()
        except ValueError as e:
            logger.warning("invalid FEN %r: %s", fen, e)
            return False
        history = []
        for move_str in moves:
            try:
                move = board.parse_uci(move_str)
            except ValueError:
                logger.warning("illegal move in position: %s", move_str)
                self.board, self.move_history = board, history
                return False
            board.push(move)
            history.append(move_str)
        self.board, self.move_history = board, history
        return True

    def get_fen(self) -> str:
        """Return the current FEN."""
        return self.board.fen()

    def game_hashes(self) -> Tuple[int, ...]:
        """Keys of the positions that preceded the current one."""
        return position_hashes(self.board)
