"""
UCI protocol front end.

The loop reads commands from stdin and answers on stdout; diagnostics go to
the log (stderr). ``go`` starts the search on a background thread so that
``stop`` can be handled while it runs; the search thread prints ``bestmove``
when it finishes.

Besides the standard commands, ``eval`` prints the score of the last search
and ``d`` / ``display`` print the board.
"""

import logging
import sys
from typing import List, Optional, Sequence, TextIO, Tuple

import chess

from xewali.config import CONFIG, configure_logging
from xewali.core.search import SearchInfo, SearchResult
from xewali.core.timeman import ClockState
from xewali.core.utils import format_info
from xewali.main import Engine

logger = logging.getLogger(__name__)

GO_INT_PARAMS = ("depth", "movetime", "wtime", "btime", "winc", "binc", "movestogo")


def parse_position(tokens: Sequence[str]) -> Tuple[Optional[str], List[str]]:
    """Split ``position`` arguments into (fen or None for startpos, moves)."""
    if not tokens:
        return None, []
    if "moves" in tokens:
        idx = list(tokens).index("moves")
        head, moves = list(tokens[:idx]), list(tokens[idx + 1:])
    else:
        head, moves = list(tokens), []
    if head and head[0] == "fen":
        return " ".join(head[1:]), moves
    if head and head[0] != "startpos":
        logger.warning("unknown position type: %s", head[0])
    return None, moves


def parse_go(tokens: Sequence[str], turn: chess.Color = chess.WHITE) -> ClockState:
    """Turn ``go`` arguments into the clock of the side to move."""
    params = {}
    i = 0
    while i < len(tokens):
        key = tokens[i]
        if key in GO_INT_PARAMS and i + 1 < len(tokens):
            try:
                params[key] = int(tokens[i + 1])
            except ValueError:
                logger.warning("bad value for go %s: %r", key, tokens[i + 1])
            i += 2
        else:
            i += 1

    time_key, inc_key = ("wtime", "winc") if turn == chess.WHITE else ("btime", "binc")
    return ClockState(
        remaining_ms=params.get(time_key),
        increment_ms=params.get(inc_key, 0),
        moves_to_go=params.get("movestogo"),
        movetime_ms=params.get("movetime"),
        depth=params.get("depth"),
        infinite="infinite" in tokens,
    )


def parse_setoption(tokens: Sequence[str]) -> Tuple[str, str]:
    """``setoption name <name...> [value <value...>]`` -> (name, value)."""
    tokens = list(tokens)
    if "name" not in tokens:
        return "", ""
    start = tokens.index("name") + 1
    if "value" in tokens:
        idx = tokens.index("value")
        return " ".join(tokens[start:idx]), " ".join(tokens[idx + 1:])
    return " ".join(tokens[start:]), ""


class UCI:
    def __init__(self, engine: Optional[Engine] = None, out: Optional[TextIO] = None):
        self.engine = engine or Engine()
        self.out = out

    def send(self, line: str) -> None:
        print(line, file=self.out or sys.stdout, flush=True)

    def run(self, stream: Optional[TextIO] = None):
        for raw_line in stream or sys.stdin:
            if not self.handle(raw_line):
                break
        self.engine.stop()

    def handle(self, line: str) -> bool:
        """Process one command line. Returns False when the loop should end."""
        tokens = line.split()
        if not tokens:
            return True
        command, args = tokens[0], tokens[1:]

        if command == "uci":
            self.send(f"id name {CONFIG.ui.engine_name}")
            self.send(f"id author {CONFIG.ui.engine_author}")
            self.send(f"option name Hash type spin default {CONFIG.tt.hash_size_mb} min 1 max 4096")
            self.send(f"option name OwnBook type check default {str(self.engine.own_book).lower()}")
            self.send("option name BookFile type string default <empty>")
            self.send("option name BookSeed type spin default 0 min 0 max 2147483647")
            self.send("uciok")
        elif command == "isready":
            self.send("readyok")
        elif command == "ucinewgame":
            self.engine.reset()
        elif command == "position":
            fen, moves = parse_position(args)
            if not self.engine.set_position(fen, moves):
                logger.warning("position command not fully applied: %s", line.strip())
        elif command == "go":
            self._go(args)
        elif command == "stop":
            self.engine.stop()
            self.engine.search.wait(2.0)
        elif command == "setoption":
            self._setoption(*parse_setoption(args))
        elif command == "quit":
            return False
        elif command == "eval":
            self.send(str(self.engine.last_score))
        elif command in ("d", "display"):
            self.send(str(self.engine.board.board))
            self.send(f"Fen: {self.engine.board.get_fen()}")
        else:
            logger.debug("ignoring unknown command: %r", command)
        return True

    def _go(self, args: List[str]):
        if self.engine.search.is_searching():
            self.engine.stop()
            self.engine.search.wait(2.0)
        clock = parse_go(args, self.engine.board.board.turn)

        def on_info(info: SearchInfo):
            self.send(format_info(info))

        def on_done(result: SearchResult):
            self.send(f"bestmove {result.move.uci() if result.move else '(none)'}")

        if not self.engine.start(clock, on_info, on_done):
            logger.warning("search already running, go ignored")

    def _setoption(self, name: str, value: str):
        key = name.lower()
        try:
            if key == "hash":
                self.engine.set_hash_size(int(value))
            elif key == "ownbook":
                self.engine.use_book(value.lower() == "true")
            elif key == "bookfile":
                self.engine.set_book(value if value and value != "<empty>" else None)
            elif key == "bookseed":
                self.engine.set_book_seed(int(value))
            else:
                logger.debug("unknown option %r", name)
        except ValueError:
            logger.warning("bad value for option %s: %r", name, value)


def main():
    configure_logging(CONFIG.log_level)
    UCI().run()


if __name__ == "__main__":
    main()
