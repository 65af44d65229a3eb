"""
Debug logging for following alignment decisions after the fact.

Creates two log files:
- alignment.log: Batches, commits, rescues, anchors and soft-advances
- scroll.log: Scroll commands emitted to the viewport

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path

# Log files location (in project root)
LOG_DIR: Path = Path(__file__).parent.parent.parent / "logs"
ALIGNMENT_LOG: Path = LOG_DIR / "alignment.log"
SCROLL_LOG: Path = LOG_DIR / "scroll.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable() -> None:
    """Enable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def _append(log_file: Path, line: str) -> None:
    _ensure_log_dir()
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write(f"[{_timestamp()}] {line}\n")


def clear_logs() -> None:
    """Clear both log files for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    log_file: Path
    for log_file in [ALIGNMENT_LOG, SCROLL_LOG]:
        with open(log_file, 'w', encoding='utf-8') as f:
            f.write(
                f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_batch(batch: list[str], is_final: bool, verdict: str) -> None:
    """Log a spoken batch and the gate verdict it received."""
    if not _ENABLED:
        return
    kind: str = "final" if is_final else "interim"
    _append(ALIGNMENT_LOG, f"batch {kind:7} {verdict:17} {batch}")


def log_commit(old_index: int, new_index: int, line: int, score: float, reason: str) -> None:
    """
    Log a change of the committed index.

    Args:
        old_index: Previous committed word index
        new_index: New committed word index
        line: Script line of the new index
        score: Similarity behind the decision
        reason: commit, anchor, soft_advance or forced
    """
    if not _ENABLED:
        return
    _append(ALIGNMENT_LOG,
            f"COMMIT {reason:12} {old_index:4d} -> {new_index:4d} line={line} score={score:.3f}")


def log_event(event: str, detail: str = "") -> None:
    """Log a mode change such as rescue entry/exit."""
    if not _ENABLED:
        return
    _append(ALIGNMENT_LOG, f"{event:15} {detail}")


def log_scroll(sequence: int, offset: float, ratio: float) -> None:
    """Log a scroll command leaving the engine."""
    if not _ENABLED:
        return
    _append(SCROLL_LOG, f"#{sequence:5d} offset={offset:8.1f} ratio={ratio:.3f}")
