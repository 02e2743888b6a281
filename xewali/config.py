# xewali/config.py
from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import os
import sys
import tomllib

# Defaults (centipawns)
PIECE_VALUES = {
    "PAWN": 100,
    "KNIGHT": 320,
    "BISHOP": 330,
    "ROOK": 500,
    "QUEEN": 900,
}

@dataclass
class SearchConfig:
    max_depth: int = 64
    use_quiescence: bool = True
    q_max_depth: int = 8
    q_recapture_only: bool = False
    use_tt: bool = True
    node_check_interval: int = 64  # nodes between stop-event polls; the deadline is checked every node
    stop_on_mate: bool = True

@dataclass
class TTConfig:
    max_entries: Optional[int] = None  # overrides hash_size_mb when set
    hash_size_mb: int = 64
    replacement: str = "depth"  # "depth" or "always"

@dataclass
class EvalConfig:
    piece_values: Dict[str, int] = field(default_factory=lambda: PIECE_VALUES.copy())
    endgame_threshold: int = 2000  # per side, pawns included
    mobility_weight: float = 10.0
    mobility_cap: int = 23  # round(10 * ln 10)
    use_king_safety: bool = True
    king_safety_weights: Dict[str, int] = field(default_factory=lambda: {
        "missing_shield": 15, "open_file": 10, "shield_home": 10, "shield_advanced": 5,
        "KNIGHT": 10, "BISHOP": 10, "ROOK": 15, "QUEEN": 25,
    })

@dataclass
class TimeConfig:
    default_moves_to_go: int = 40
    min_moves_to_go: int = 10
    increment_fraction: float = 0.8
    max_fraction: float = 0.2  # never plan to spend more than this share of the clock
    min_ms: int = 10
    max_ms: int = 5000
    overhead_ms: int = 30
    soft_ratio: float = 0.5  # do not start a new iteration past this share of the budget

@dataclass
class BookConfig:
    enabled: bool = True
    path: Optional[str] = None  # .bin (polyglot) or text file of UCI move lines
    seed: Optional[int] = None

@dataclass
class UIConfig:
    engine_name: str = "Xewali 1.0"
    engine_author: str = "Himangshu Saikia"

@dataclass
class Config:
    search: SearchConfig = field(default_factory=SearchConfig)
    tt: TTConfig = field(default_factory=TTConfig)
    eval: EvalConfig = field(default_factory=EvalConfig)
    time: TimeConfig = field(default_factory=TimeConfig)
    book: BookConfig = field(default_factory=BookConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    log_level: str = "INFO"

    @staticmethod
    def load_from_toml(path: str = "config.toml") -> "Config":
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("search", "tt", "eval", "time", "book", "ui"):
            if section in raw:
                target = getattr(cfg, section)
                for k, v in raw[section].items():
                    if not hasattr(target, k):
                        continue
                    current = getattr(target, k)
                    # tables are merged into the defaults, not replaced
                    if isinstance(current, dict) and isinstance(v, dict):
                        current.update(v)
                    else:
                        setattr(target, k, v)
        if "log_level" in raw:
            cfg.log_level = str(raw["log_level"])
        return cfg


def configure_logging(level: str = "INFO") -> None:
    """Route log records to stderr; stdout belongs to the protocol."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# single globally importable config instance
CONFIG = Config.load_from_toml(os.environ.get("XEWALI_CONFIG_TOML", "config.toml"))
# allow env override of depth for quick debugging
override_depth = os.environ.get("XEWALI_SEARCH_DEPTH")
if override_depth and override_depth.isdigit():
    CONFIG.search.max_depth = int(override_depth)
