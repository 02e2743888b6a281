"""
Evaluator Module
================

Static evaluation for the search. A position is scored from the point of view
of the side to move (negamax convention): positive means the side to move is
better.

Terms:
    - Material with fixed centipawn piece values.
    - Piece-square tables; the king switches to an endgame table once both
      sides are short of material.
    - Mobility as a log ratio of the squares each side attacks.
    - King safety (middlegame only): pawn shield, open files, attackers.
"""

import math
from typing import Dict, List

import chess

from xewali.config import CONFIG, EvalConfig

# Piece-square tables, White's point of view, index 0 = A1, index 63 = H8.
# Black pieces read the table through chess.square_mirror.

PST_PAWN: List[int] = [
      0,   0,   0,   0,   0,   0,   0,   0,
      5,  10,  10, -20, -20,  10,  10,   5,
      5,  -5, -10,   0,   0, -10,  -5,   5,
      0,   0,   0,  20,  20,   0,   0,   0,
      5,   5,  10,  25,  25,  10,   5,   5,
     10,  10,  20,  30,  30,  20,  10,  10,
     50,  50,  50,  50,  50,  50,  50,  50,
      0,   0,   0,   0,   0,   0,   0,   0,
]

PST_KNIGHT: List[int] = [
    -50, -40, -30, -30, -30, -30, -40, -50,
    -40, -20,   0,   5,   5,   0, -20, -40,
    -30,   5,  10,  15,  15,  10,   5, -30,
    -30,   0,  15,  20,  20,  15,   0, -30,
    -30,   5,  15,  20,  20,  15,   5, -30,
    -30,   0,  10,  15,  15,  10,   0, -30,
    -40, -20,   0,   0,   0,   0, -20, -40,
    -50, -40, -30, -30, -30, -30, -40, -50,
]

PST_BISHOP: List[int] = [
    -20, -10, -10, -10, -10, -10, -10, -20,
    -10,   5,   0,   0,   0,   0,   5, -10,
    -10,  10,  10,  10,  10,  10,  10, -10,
    -10,   0,  10,  10,  10,  10,   0, -10,
    -10,   5,   5,  10,  10,   5,   5, -10,
    -10,   0,   5,  10,  10,   5,   0, -10,
    -10,   0,   0,   0,   0,   0,   0, -10,
    -20, -10, -10, -10, -10, -10, -10, -20,
]

PST_ROOK: List[int] = [
      0,   0,   0,   5,   5,   0,   0,   0,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
     -5,   0,   0,   0,   0,   0,   0,  -5,
      5,  10,  10,  10,  10,  10,  10,   5,
      0,   0,   0,   0,   0,   0,   0,   0,
]

PST_QUEEN: List[int] = [
    -20, -10, -10,  -5,  -5, -10, -10, -20,
    -10,   0,   5,   0,   0,   0,   0, -10,
    -10,   5,   5,   5,   5,   5,   0, -10,
      0,   0,   5,   5,   5,   5,   0,  -5,
     -5,   0,   5,   5,   5,   5,   0,  -5,
    -10,   0,   5,   5,   5,   5,   0, -10,
    -10,   0,   0,   0,   0,   0,   0, -10,
    -20, -10, -10,  -5,  -5, -10, -10, -20,
]

PST_KING_MG: List[int] = [
     20,  30,  10,   0,   0,  10,  30,  20,
     20,  20,   0,   0,   0,   0,  20,  20,
    -10, -20, -20, -20, -20, -20, -20, -10,
    -20, -30, -30, -40, -40, -30, -30, -20,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
    -30, -40, -40, -50, -50, -40, -40, -30,
]

PST_KING_EG: List[int] = [
    -50, -30, -30, -30, -30, -30, -30, -50,
    -30, -30,   0,   0,   0,   0, -30, -30,
    -30, -10,  20,  30,  30,  20, -10, -30,
    -30, -10,  30,  40,  40,  30, -10, -30,
    -30, -10,  30,  40,  40,  30, -10, -30,
    -30, -10,  20,  30,  30,  20, -10, -30,
    -30, -20, -10,   0,   0, -10, -20, -30,
    -50, -40, -30, -20, -20, -30, -40, -50,
]

PST: Dict[chess.PieceType, List[int]] = {
    chess.PAWN: PST_PAWN,
    chess.KNIGHT: PST_KNIGHT,
    chess.BISHOP: PST_BISHOP,
    chess.ROOK: PST_ROOK,
    chess.QUEEN: PST_QUEEN,
}

MATERIAL_PIECES = [chess.PAWN, chess.KNIGHT, chess.BISHOP, chess.ROOK, chess.QUEEN]
ATTACKER_PIECES = [chess.KNIGHT, chess.BISHOP, chess.ROOK, chess.QUEEN]


def mobility_bonus(white: int, black: int, weight: float = 10.0, cap: int = 23) -> int:
    """Return ``weight * ln(white / black)`` rounded to centipawns.

    A side with no influence at all cannot be put in the logarithm; the
    other side then gets ``cap`` (or nothing when both are zero).
    """
    if white > 0 and black > 0:
        return int(round(weight * (math.log(white) - math.log(black))))
    if white > 0:
        return cap
    if black > 0:
        return -cap
    return 0


class Evaluator:
    """
    Stateless static evaluator. Holds only its configuration.
    """

    def __init__(self, cfg: EvalConfig = None) -> None:
        self.cfg = cfg or CONFIG.eval
        self.piece_values: Dict[chess.PieceType, int] = {
            pt: self.cfg.piece_values[chess.piece_name(pt).upper()]
            for pt in MATERIAL_PIECES
        }

    def evaluate(self, board: chess.Board) -> int:
        """
        Calculates the static value of the current board position.

        Args:
            board (chess.Board): The position to evaluate. Not modified.

        Returns:
            int: The score in centipawns (100 cp = 1 Pawn).
                 Positive values favor the side to move.
        """
        if board.is_insufficient_material():
            return 0

        is_endgame = self.is_endgame(board)

        score = self._eval_pieces(board, chess.WHITE, is_endgame)
        score -= self._eval_pieces(board, chess.BLACK, is_endgame)

        score += mobility_bonus(
            self.influence(board, chess.WHITE),
            self.influence(board, chess.BLACK),
            self.cfg.mobility_weight,
            self.cfg.mobility_cap,
        )

        if self.cfg.use_king_safety and not is_endgame:
            score += self._eval_king_safety(board, chess.WHITE)
            score -= self._eval_king_safety(board, chess.BLACK)

        # Return score relative to the side to move (Negamax requirement)
        if board.turn == chess.BLACK:
            return -score
        return score

    def material(self, board: chess.Board, color: chess.Color) -> int:
        """Raw material of one side, king excluded."""
        return sum(
            self.piece_values[pt] * board.pieces_mask(pt, color).bit_count()
            for pt in MATERIAL_PIECES
        )

    def is_endgame(self, board: chess.Board) -> bool:
        threshold = self.cfg.endgame_threshold
        return (
            self.material(board, chess.WHITE) < threshold
            and self.material(board, chess.BLACK) < threshold
        )

    def influence(self, board: chess.Board, color: chess.Color) -> int:
        """Number of squares attacked by every piece of ``color``, counted per piece."""
        total = 0
        for sq in chess.scan_forward(board.occupied_co[color]):
            total += board.attacks_mask(sq).bit_count()
        return total

    def _eval_pieces(self, board: chess.Board, color: chess.Color, is_endgame: bool) -> int:
        score = 0
        for pt in MATERIAL_PIECES:
            table = PST[pt]
            for sq in chess.scan_forward(board.pieces_mask(pt, color)):
                idx = sq if color == chess.WHITE else chess.square_mirror(sq)
                score += self.piece_values[pt] + table[idx]

        king_sq = board.king(color)
        if king_sq is not None:
            idx = king_sq if color == chess.WHITE else chess.square_mirror(king_sq)
            score += PST_KING_EG[idx] if is_endgame else PST_KING_MG[idx]
        return score

    def _eval_king_safety(self, board: chess.Board, color: chess.Color) -> int:
        """
        Shelter score for one side's king (positive = safer).

        Looks at the king file and its neighbours for friendly pawns on the
        two shield ranks, penalises files without them, and penalises every
        enemy piece that attacks the king or a square next to it.
        """
        king_sq = board.king(color)
        if king_sq is None:
            return 0

        w = self.cfg.king_safety_weights
        enemy = not color
        our_pawns = board.pieces_mask(chess.PAWN, color)
        their_pawns = board.pieces_mask(chess.PAWN, enemy)
        home_rank, advanced_rank = (1, 2) if color == chess.WHITE else (6, 5)

        score = 0
        king_file = chess.square_file(king_sq)
        for f in range(max(0, king_file - 1), min(7, king_file + 1) + 1):
            friendly = our_pawns & chess.BB_FILES[f]
            if not friendly:
                score -= w["missing_shield"]
                if not their_pawns & chess.BB_FILES[f]:
                    score -= w["open_file"]
            elif friendly & chess.BB_SQUARES[chess.square(f, home_rank)]:
                score += w["shield_home"]
            elif friendly & chess.BB_SQUARES[chess.square(f, advanced_rank)]:
                score += w["shield_advanced"]

        zone = chess.BB_KING_ATTACKS[king_sq] | chess.BB_SQUARES[king_sq]
        for pt in ATTACKER_PIECES:
            penalty = w[chess.piece_name(pt).upper()]
            for sq in chess.scan_forward(board.pieces_mask(pt, enemy)):
                if board.attacks_mask(sq) & zone:
                    score -= penalty
        return score
