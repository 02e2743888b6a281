"""Core engine components: board adapter, evaluator, search, and transposition table."""

from .board import ChessBoard
from .evaluator import Evaluator
from .history import PositionHistory
from .ordering import MoveOrderer
from .search import SearchEngine, SearchInfo, SearchResult
from .timeman import ClockState, TimeBudget, TimeManager
from .transposition import TranspositionTable
