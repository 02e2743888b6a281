"""Move ordering for the alpha-beta search."""

from typing import Dict, Iterable, List, Optional

import chess

# Sort buckets, highest first.
BUCKET_TT = 3
BUCKET_ROOT = 2
BUCKET_TACTICAL = 1
BUCKET_QUIET = 0

PROMOTION_BONUS = 9000


def mvv_lva(board: chess.Board, move: chess.Move) -> int:
    """Most valuable victim, least valuable attacker. Zero for quiet moves."""
    attacker = board.piece_type_at(move.from_square)
    if board.is_en_passant(move):
        victim = chess.PAWN
    else:
        victim = board.piece_type_at(move.to_square)
    if not victim or not attacker:
        return 0
    return victim * 10 - attacker


class MoveOrderer:
    """
    Sorts moves so the likely best ones are searched first.

    Priority: the transposition-table move, then (at the root) moves scored
    by the previous iteration in descending order, then captures and
    promotions by MVV-LVA, then everything else in generation order.
    """

    def __init__(self, piece_values: Optional[Dict[chess.PieceType, int]] = None):
        self.piece_values = piece_values or {
            chess.PAWN: 100, chess.KNIGHT: 320, chess.BISHOP: 330,
            chess.ROOK: 500, chess.QUEEN: 900,
        }

    def tactical_score(self, board: chess.Board, move: chess.Move) -> Optional[int]:
        """Score of a capture or promotion, None for a quiet move."""
        score = None
        if board.is_capture(move):
            score = mvv_lva(board, move)
        if move.promotion:
            score = (score or 0) + PROMOTION_BONUS + self.piece_values.get(move.promotion, 0)
        return score

    def order(
        self,
        board: chess.Board,
        moves: Iterable[chess.Move],
        tt_move: Optional[chess.Move] = None,
        root_scores: Optional[Dict[chess.Move, int]] = None,
    ) -> List[chess.Move]:
        def key(move):
            if move == tt_move:
                return (BUCKET_TT, 0)
            if root_scores and move in root_scores:
                return (BUCKET_ROOT, root_scores[move])
            tactical = self.tactical_score(board, move)
            if tactical is not None:
                return (BUCKET_TACTICAL, tactical)
            return (BUCKET_QUIET, 0)

        # sorted() is stable with reverse=True, so ties keep generation order
        return sorted(moves, key=key, reverse=True)


def rank_root_moves(scores: Dict[chess.Move, int]) -> List[chess.Move]:
    """
    Root moves of a finished iteration, best first.

    ``scores`` is in the order the moves were searched. Fail-low moves share
    upper-bound scores, so equal scores keep that order.
    """
    return sorted(scores, key=scores.__getitem__, reverse=True)
