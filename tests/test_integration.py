"""
Integration test suite for the Xewali chess engine.

Tests components working together end-to-end:
- Full game simulations (engine vs engine)
- Iterative deepening under time budgets and stop requests
- Repetition handling with real game history
- Async search lifecycle (start/stop/callback)
- Opening book (text and polyglot) feeding the search
- Engine facade and configuration loading
- UCI protocol integration
"""

import chess
import chess.polyglot
import io
import pytest
import struct
import time

from xewali.book import OpeningBook
from xewali.config import Config, SearchConfig
from xewali.core.board import legal_moves, position_hashes, zobrist_key
from xewali.core.evaluator import Evaluator
from xewali.core.search import MATE_SCORE, SearchContext, SearchEngine, SearchInfo
from xewali.core.timeman import ClockState, TimeBudget, TimeManager
from xewali.core.transposition import TranspositionTable
from xewali.core.utils import format_info
from xewali.main import Engine
from interface.uci import UCI, parse_go, parse_position, parse_setoption

MIDGAME_FEN = "r1bqk2r/pppp1ppp/2n2n2/2b1p3/2B1P3/5N2/PPPP1PPP/RNBQK2R w KQkq - 4 4"
KIWIPETE_FEN = "r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1"


def small_tt():
    return TranspositionTable(max_entries=1 << 16)


def write_polyglot_entry(path, board, move, weight=1):
    """One-entry polyglot book: big-endian key, move, weight, learn."""
    raw = (chess.square_file(move.to_square)
           | chess.square_rank(move.to_square) << 3
           | chess.square_file(move.from_square) << 6
           | chess.square_rank(move.from_square) << 9)
    with open(path, "wb") as f:
        f.write(struct.pack(">QHHI", chess.polyglot.zobrist_hash(board), raw, weight, 0))


# ════════════════════════════════════════════════════════════════════════════
#  ENGINE VS ENGINE: FULL GAME SIMULATIONS
# ════════════════════════════════════════════════════════════════════════════


class TestFullGame:
    """Tests that the engine can keep playing legal moves."""

    def test_engine_vs_engine_short_game(self):
        engine = SearchEngine(depth=1, tt=small_tt())
        board = chess.Board()

        for ply in range(16):
            if board.is_game_over():
                break
            result = engine.search_best_move(board)
            assert result.move in board.legal_moves, f"Illegal move {result.move} at ply {ply}"
            board.push(result.move)

        assert len(board.move_stack) > 10

    def test_engine_alternating_colors(self):
        engine = SearchEngine(depth=2, tt=small_tt())
        board = chess.Board()

        for i in range(6):
            expected_turn = chess.WHITE if i % 2 == 0 else chess.BLACK
            assert board.turn == expected_turn
            board.push(engine.search_best_move(board).move)

    def test_engine_converts_kq_vs_k_mate_in_one(self):
        board = chess.Board("7k/8/6K1/8/8/8/8/1Q6 w - - 0 1")
        result = SearchEngine(depth=3, tt=small_tt()).search_best_move(board)
        board.push(result.move)
        assert board.is_checkmate()
        assert result.score == MATE_SCORE - 1


# ════════════════════════════════════════════════════════════════════════════
#  ITERATIVE DEEPENING + TIME MANAGEMENT
# ════════════════════════════════════════════════════════════════════════════


class TestIterativeDeepening:
    def test_budget_respected(self):
        engine = SearchEngine(depth=64, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        start = time.monotonic()
        result = engine.search_best_move(board, budget=TimeBudget(300))
        elapsed_ms = (time.monotonic() - start) * 1000
        assert elapsed_ms < 300 + 100
        assert result.move in board.legal_moves

    @pytest.mark.parametrize("fen, remaining_ms", [
        (KIWIPETE_FEN, 100),
        (MIDGAME_FEN, 100),
        (MIDGAME_FEN, 3000),
    ])
    def test_short_clock_never_flags(self, fen, remaining_ms):
        engine = SearchEngine(depth=64, tt=small_tt())
        board = chess.Board(fen)
        budget = TimeManager().allocate(ClockState(remaining_ms=remaining_ms), board.fullmove_number)
        result = engine.search_best_move(board, budget=budget)
        elapsed_ms = budget.elapsed_ms()
        assert result.move in board.legal_moves
        assert elapsed_ms < remaining_ms
        assert elapsed_ms < budget.limit_ms + 50

    def test_deadline_checked_between_root_moves(self):
        engine = SearchEngine(depth=3, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        engine._ctx = SearchContext(TimeBudget(0))
        move, _, scores = engine._search_root(board, 3, legal_moves(board), None, None)
        assert move is None
        assert scores == {}
        assert engine._ctx.nodes == 0

    def test_max_depth_honoured(self):
        infos = []
        engine = SearchEngine(depth=64, tt=small_tt())
        result = engine.search_best_move(chess.Board(), max_depth=2, callback=infos.append)
        assert result.depth == 2
        assert [i.depth for i in infos] == [1, 2]

    def test_info_is_monotonic(self):
        infos = []
        engine = SearchEngine(depth=3, tt=small_tt())
        engine.search_best_move(chess.Board(MIDGAME_FEN), callback=infos.append)
        assert all(isinstance(i, SearchInfo) for i in infos)
        nodes = [i.nodes for i in infos]
        assert nodes == sorted(nodes)

    def test_pv_is_legal_line(self):
        engine = SearchEngine(depth=3, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        result = engine.search_best_move(board)
        assert result.pv[0] == result.move
        replay = board.copy()
        for move in result.pv:
            assert move in replay.legal_moves
            replay.push(move)

    def test_tt_persists_across_searches(self):
        engine = SearchEngine(depth=3, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        engine.search_best_move(board)
        entry = engine.tt.lookup(zobrist_key(board))
        assert entry is not None
        assert entry.best_move in board.legal_moves

    def test_deterministic_without_book(self):
        board = chess.Board(MIDGAME_FEN)
        r1 = SearchEngine(depth=3, tt=small_tt()).search_best_move(board)
        r2 = SearchEngine(depth=3, tt=small_tt()).search_best_move(board)
        assert r1.move == r2.move
        assert r1.score == r2.score

    def test_clock_budget_through_facade(self):
        engine = Engine()
        start = time.time()
        move = engine.choose_move(ClockState(remaining_ms=3000, increment_ms=0))
        assert time.time() - start < 3.0
        assert move in engine.board.board.legal_moves


# ════════════════════════════════════════════════════════════════════════════
#  REPETITION WITH GAME HISTORY
# ════════════════════════════════════════════════════════════════════════════


class TestRepetition:
    def _shuffled_board(self):
        board = chess.Board()
        for m in ["g1f3", "g8f6", "f3g1", "f6g8"] * 2 + ["g1f3", "g8f6"]:
            board.push_uci(m)
        return board

    def test_move_into_threefold_scores_zero(self):
        board = self._shuffled_board()
        engine = SearchEngine(depth=2, tt=small_tt())
        engine.history.set_game(position_hashes(board))
        legal = legal_moves(board)
        _, _, scores = engine._search_root(board, 1, legal, None, None)
        # f3g1 reaches the position after the first f3g1 for the third time
        assert scores[chess.Move.from_uci("f3g1")] == 0
        assert len(engine.history) == 0

    def test_second_occurrence_is_not_draw(self):
        board = chess.Board()
        for m in ["g1f3", "g8f6", "f3g1", "f6g8", "g1f3", "g8f6"]:
            board.push_uci(m)
        engine = SearchEngine(depth=2, tt=small_tt())
        history = position_hashes(board)
        board.push_uci("f3g1")
        engine.history.set_game(history)
        assert not engine.history.is_repetition(zobrist_key(board))

    def test_driver_uses_board_history_by_default(self):
        board = self._shuffled_board()
        engine = SearchEngine(depth=2, tt=small_tt())
        engine.search_best_move(board)
        assert engine.history.occurrences(zobrist_key(chess.Board())) == 3


# ════════════════════════════════════════════════════════════════════════════
#  ASYNC SEARCH LIFECYCLE
# ════════════════════════════════════════════════════════════════════════════


class TestAsyncSearch:
    def test_start_search_reports_result(self):
        engine = SearchEngine(depth=2, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        infos, done = [], []

        assert engine.start_search(board, callback=infos.append, on_done=done.append)
        assert engine.wait(30)
        assert len(done) == 1
        assert done[0].move in board.legal_moves
        assert [i.depth for i in infos] == [1, 2]

    def test_stop_ends_infinite_search(self):
        engine = SearchEngine(depth=64, cfg=SearchConfig(node_check_interval=64), tt=small_tt())
        done = []
        engine.start_search(chess.Board(MIDGAME_FEN), on_done=done.append)
        time.sleep(0.2)
        engine.stop()
        assert engine.wait(5)
        assert done and done[0].move is not None

    def test_second_start_rejected_while_running(self):
        engine = SearchEngine(depth=64, cfg=SearchConfig(node_check_interval=64), tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        assert engine.start_search(board)
        assert engine.start_search(board) is False
        engine.stop()
        assert engine.wait(5)
        assert not engine.is_searching()

    def test_search_board_is_private(self):
        engine = SearchEngine(depth=3, tt=small_tt())
        board = chess.Board(MIDGAME_FEN)
        engine.start_search(board)
        # the caller may keep using its board while the search runs
        board.push_uci("e1g1")
        assert engine.wait(30)
        assert board.piece_at(chess.G1) == chess.Piece(chess.KING, chess.WHITE)


# ════════════════════════════════════════════════════════════════════════════
#  OPENING BOOK
# ════════════════════════════════════════════════════════════════════════════


class TestOpeningBook:
    def test_text_book_lookup(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4 e7e5 g1f3\nd2d4 d7d5\ne2e4 c7c5\n")
        book = OpeningBook.load(str(path))

        assert book.lookup(chess.Board()) == {chess.Move.from_uci("e2e4"), chess.Move.from_uci("d2d4")}
        after_e4 = chess.Board()
        after_e4.push_uci("e2e4")
        assert book.lookup(after_e4) == {chess.Move.from_uci("e7e5"), chess.Move.from_uci("c7c5")}

    def test_bad_move_ends_line(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4 e2e5 d7d5\n")
        book = OpeningBook.load(str(path))
        after_e4 = chess.Board()
        after_e4.push_uci("e2e4")
        assert book.lookup(after_e4) == set()
        assert len(book) == 1

    def test_missing_book_is_empty(self, tmp_path):
        book = OpeningBook.load(str(tmp_path / "nope.txt"))
        assert not book
        assert book.lookup(chess.Board()) == set()

    def test_out_of_book_position(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4 e7e5\n")
        book = OpeningBook.load(str(path))
        assert book.lookup(chess.Board(MIDGAME_FEN)) == set()

    def test_polyglot_book(self, tmp_path):
        path = tmp_path / "book.bin"
        board = chess.Board()
        write_polyglot_entry(str(path), board, chess.Move.from_uci("e2e4"))
        book = OpeningBook.load(str(path))
        assert book.lookup(board) == {chess.Move.from_uci("e2e4")}
        book.close()

    def test_search_plays_book_move(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4 e7e5\nd2d4 d7d5\n")
        engine = SearchEngine(depth=2, tt=small_tt(), book=OpeningBook.load(str(path)))
        result = engine.search_best_move(chess.Board())
        assert result.from_book
        assert result.move in {chess.Move.from_uci("e2e4"), chess.Move.from_uci("d2d4")}
        assert engine.nodes == 0

    def test_book_choice_is_seeded(self, tmp_path):
        import random

        path = tmp_path / "book.txt"
        path.write_text("\n".join(["e2e4", "d2d4", "c2c4", "g1f3", "b2b3"]) + "\n")
        picks = []
        for _ in range(2):
            engine = SearchEngine(depth=1, tt=small_tt(), book=OpeningBook.load(str(path)),
                                  rng=random.Random(1234))
            picks.append([engine.search_best_move(chess.Board()).move for _ in range(5)])
        assert picks[0] == picks[1]

    def test_falls_back_to_search_out_of_book(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4 e7e5\n")
        engine = SearchEngine(depth=2, tt=small_tt(), book=OpeningBook.load(str(path)))
        result = engine.search_best_move(chess.Board(MIDGAME_FEN))
        assert not result.from_book
        assert result.depth == 2


# ════════════════════════════════════════════════════════════════════════════
#  ENGINE FACADE + CONFIG
# ════════════════════════════════════════════════════════════════════════════


class TestEngineFacade:
    def setup_method(self):
        self.engine = Engine(depth=2)

    def test_choose_move_start_position(self):
        move = self.engine.choose_move(ClockState(depth=2))
        assert move in chess.Board().legal_moves

    def test_set_position_and_choose(self):
        assert self.engine.set_position(None, ["e2e4", "e7e5", "g1f3"])
        move = self.engine.choose_move(ClockState(depth=2))
        assert self.engine.board.board.turn == chess.BLACK
        assert move in self.engine.board.board.legal_moves

    def test_choose_move_none_when_mated(self):
        self.engine.set_position("rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 0 1")
        assert self.engine.choose_move(ClockState(depth=2)) is None

    def test_finds_mate_in_one(self):
        self.engine.set_position("6k1/5ppp/8/8/8/8/8/R3K3 w - - 0 1")
        assert self.engine.choose_move(ClockState(depth=3)) == chess.Move.from_uci("a1a8")
        assert self.engine.last_score == MATE_SCORE - 1

    def test_progress_callback(self):
        infos = []
        self.engine.choose_move(ClockState(depth=2), callback=infos.append)
        assert [i.depth for i in infos] == [1, 2]

    def test_reset(self):
        self.engine.set_position(None, ["e2e4"])
        self.engine.choose_move(ClockState(depth=2))
        self.engine.reset()
        assert self.engine.board.get_fen() == chess.STARTING_FEN
        assert len(self.engine.search.tt) == 0

    def test_hash_option_resizes_table(self):
        self.engine.set_hash_size(1)
        assert self.engine.search.tt.capacity == 1024 * 1024 // 128

    def test_book_toggle(self, tmp_path):
        path = tmp_path / "book.txt"
        path.write_text("e2e4\n")
        self.engine.set_book(str(path))
        assert self.engine.think(ClockState(depth=1)).from_book
        self.engine.use_book(False)
        assert not self.engine.think(ClockState(depth=1)).from_book

    def test_start_and_stop(self):
        done = []
        self.engine.start(ClockState(infinite=True), on_done=done.append)
        time.sleep(0.1)
        self.engine.stop()
        assert self.engine.search.wait(5)
        assert done[0].move in chess.Board().legal_moves


class TestConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = Config.load_from_toml(str(tmp_path / "missing.toml"))
        assert cfg.search.q_max_depth == 8
        assert cfg.tt.replacement == "depth"
        assert cfg.time.max_ms == 5000

    def test_overrides_and_unknown_keys(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('log_level = "DEBUG"\n[search]\nmax_depth = 7\nbogus = 1\n[tt]\nmax_entries = 4096\n')
        cfg = Config.load_from_toml(str(path))
        assert cfg.search.max_depth == 7
        assert not hasattr(cfg.search, "bogus")
        assert cfg.tt.max_entries == 4096
        assert cfg.log_level == "DEBUG"

    def test_partial_table_merges_into_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[eval]\npiece_values = { PAWN = 110 }\n')
        cfg = Config.load_from_toml(str(path))
        assert cfg.eval.piece_values["PAWN"] == 110
        assert cfg.eval.piece_values["QUEEN"] == 900
        ev = Evaluator(cfg.eval)
        assert ev.piece_values[chess.PAWN] == 110
        assert ev.piece_values[chess.KNIGHT] == 320

    def test_defaults_not_shared_between_configs(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[eval]\npiece_values = { ROOK = 450 }\n')
        Config.load_from_toml(str(path))
        assert Config().eval.piece_values["ROOK"] == 500


# ════════════════════════════════════════════════════════════════════════════
#  UCI PROTOCOL
# ════════════════════════════════════════════════════════════════════════════


class TestUCI:
    def setup_method(self):
        self.out = io.StringIO()
        self.uci = UCI(Engine(), out=self.out)

    def lines(self):
        return self.out.getvalue().splitlines()

    def test_uci_handshake(self):
        self.uci.handle("uci")
        lines = self.lines()
        assert lines[0] == "id name Xewali 1.0"
        assert lines[1].startswith("id author")
        assert lines[-1] == "uciok"

    def test_isready(self):
        self.uci.handle("isready")
        assert self.lines() == ["readyok"]

    def test_position_startpos_moves(self):
        self.uci.handle("position startpos moves e2e4 e7e5")
        assert self.uci.engine.board.move_history == ["e2e4", "e7e5"]

    def test_position_fen(self):
        fen = "6k1/5ppp/8/8/8/8/8/R3K3 w - - 0 1"
        self.uci.handle(f"position fen {fen}")
        assert self.uci.engine.board.get_fen() == fen

    def test_bad_position_keeps_loop_alive(self):
        assert self.uci.handle("position fen garbage") is True
        assert self.uci.handle("isready") is True
        assert self.lines() == ["readyok"]

    def test_go_depth_emits_bestmove(self):
        self.uci.handle("position fen 6k1/5ppp/8/8/8/8/8/R3K3 w - - 0 1")
        self.uci.handle("go depth 3")
        assert self.uci.engine.search.wait(30)
        lines = self.lines()
        assert lines[-1] == "bestmove a1a8"
        assert any("score mate 1" in line for line in lines)

    def test_go_then_stop(self):
        self.uci.handle("go infinite")
        time.sleep(0.1)
        self.uci.handle("stop")
        assert self.lines()[-1].startswith("bestmove ")

    def test_go_on_mated_position(self):
        self.uci.handle("position fen rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 0 1")
        self.uci.handle("go depth 2")
        assert self.uci.engine.search.wait(30)
        assert self.lines()[-1] == "bestmove (none)"

    def test_eval_and_display(self):
        self.uci.handle("eval")
        self.uci.handle("d")
        lines = self.lines()
        assert lines[0] == "0"
        assert lines[-1] == f"Fen: {chess.STARTING_FEN}"

    def test_setoption_hash(self):
        self.uci.handle("setoption name Hash value 1")
        assert self.uci.engine.search.tt.capacity == 1024 * 1024 // 128

    def test_setoption_bad_value_ignored(self):
        capacity = self.uci.engine.search.tt.capacity
        assert self.uci.handle("setoption name Hash value lots") is True
        assert self.uci.engine.search.tt.capacity == capacity

    def test_ucinewgame_resets(self):
        self.uci.handle("position startpos moves e2e4")
        self.uci.handle("ucinewgame")
        assert self.uci.engine.board.get_fen() == chess.STARTING_FEN

    def test_quit_and_unknown(self):
        assert self.uci.handle("xyzzy") is True
        assert self.uci.handle("quit") is False

    def test_run_loop(self):
        self.uci.run(io.StringIO("uci\nisready\nquit\nisready\n"))
        lines = self.lines()
        assert "uciok" in lines
        assert lines.count("readyok") == 1

    def test_parse_position(self):
        assert parse_position(["startpos"]) == (None, [])
        assert parse_position(["startpos", "moves", "e2e4"]) == (None, ["e2e4"])
        fen, moves = parse_position("fen 8/8/8/8/8/8/8/4K2k w - - 0 1 moves e1e2".split())
        assert fen == "8/8/8/8/8/8/8/4K2k w - - 0 1"
        assert moves == ["e1e2"]

    def test_parse_go_picks_side_to_move(self):
        tokens = "wtime 60000 btime 30000 winc 1000 binc 500 movestogo 20".split()
        white = parse_go(tokens, chess.WHITE)
        black = parse_go(tokens, chess.BLACK)
        assert (white.remaining_ms, white.increment_ms) == (60000, 1000)
        assert (black.remaining_ms, black.increment_ms) == (30000, 500)
        assert black.moves_to_go == 20

    def test_parse_go_modes(self):
        assert parse_go(["depth", "5"]).depth == 5
        assert parse_go(["movetime", "250"]).movetime_ms == 250
        assert parse_go(["infinite"]).infinite
        assert parse_go(["depth", "x"]).depth is None

    def test_parse_setoption(self):
        assert parse_setoption("name Hash value 128".split()) == ("Hash", "128")
        assert parse_setoption("name Book File value /tmp/a b.txt".split()) == ("Book File", "/tmp/a b.txt")


# ════════════════════════════════════════════════════════════════════════════
#  INFO LINES
# ════════════════════════════════════════════════════════════════════════════


class TestInfoLines:
    def test_centipawn_score(self):
        move = chess.Move.from_uci("e2e4")
        line = format_info(SearchInfo(3, 25, move, 1000, 100, [move]))
        assert line == "info depth 3 score cp 25 nodes 1000 nps 10000 time 100 pv e2e4"

    def test_mate_scores(self):
        move = chess.Move.from_uci("a1a8")
        assert "score mate 1" in format_info(SearchInfo(1, MATE_SCORE - 1, move, 10, 0, [move]))
        assert "score mate -1" in format_info(SearchInfo(2, -MATE_SCORE + 2, move, 10, 0, [move]))
        assert "score mate 2" in format_info(SearchInfo(4, MATE_SCORE - 3, move, 10, 0, [move]))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
