from xewali.core.search import MATE_SCORE, SearchInfo, is_mate_score


def format_score(score: int) -> str:
    if is_mate_score(score):
        mate_in = (MATE_SCORE - abs(score) + 1) // 2
        return f"mate {mate_in if score > 0 else -mate_in}"
    return f"cp {score}"


def format_info(info: SearchInfo) -> str:
    """Render one iteration's progress as a UCI info line."""
    pv_str = " ".join(m.uci() for m in info.pv)
    nps = int(info.nodes * 1000 / info.elapsed_ms) if info.elapsed_ms > 0 else 0
    line = (f"info depth {info.depth} score {format_score(info.score)} "
            f"nodes {info.nodes} nps {nps} time {info.elapsed_ms}")
    if pv_str:
        line += f" pv {pv_str}"
    return line
