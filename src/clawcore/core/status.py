"""
Status query answered without going through memory or the model providers.
"""

import os
import resource
import sqlite3
import sys
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path

from .. import __version__
from ..utils.logging import get_logger
from .config import is_cloud_environment

logger = get_logger(__name__)

STATM_PATH = Path("/proc/self/statm")


def rss_mb() -> float:
    """
    Current resident set size of this process in MB.

    Reads /proc/self/statm where it exists; elsewhere only the peak RSS is
    available.
    """
    try:
        resident_pages = int(STATM_PATH.read_text().split()[1])
    except (OSError, IndexError, ValueError):
        return _peak_rss_mb()
    return resident_pages * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024)


def _peak_rss_mb() -> float:
    ru_maxrss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # KB on Linux, bytes on macOS
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return ru_maxrss / divisor


def _start_of_today_ms() -> int:
    midnight = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


class StatusReporter:
    """
    Builds the plain-text status report.

    Example:
        reporter = StatusReporter(config.db_path, router.active_providers)
        print(reporter.report())
    """

    def __init__(
        self,
        db_path: Path,
        providers: Callable[[], list[str]],
        env: Mapping[str, str] | None = None,
    ):
        self.db_path = Path(db_path)
        self.providers = providers
        self.env = env

    def _storage_lines(self) -> tuple[str, int, int, float]:
        prompt = completion = 0
        cost = 0.0
        try:
            if not self.db_path.exists():
                return "Disconnected (database file missing)", prompt, completion, cost
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
            try:
                has_conversations = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='conversations'"
                ).fetchone()
                if not has_conversations:
                    return "Error: conversations table missing", prompt, completion, cost

                count = conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
                status = f"Connected ({count} messages found)"

                has_usage = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='usage'"
                ).fetchone()
                if has_usage:
                    row = conn.execute(
                        "SELECT SUM(prompt_tokens), SUM(completion_tokens), SUM(CAST(cost_usd AS REAL)) "
                        "FROM usage WHERE timestamp >= ?",
                        (_start_of_today_ms(),),
                    ).fetchone()
                    prompt, completion, cost = row[0] or 0, row[1] or 0, row[2] or 0.0
                return status, prompt, completion, cost
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning("status_storage_check_failed", error=str(e))
            return f"Check failed: {e}", prompt, completion, cost

    def report(self) -> str:
        environment = "cloud" if is_cloud_environment(self.env) else "local"
        storage, prompt, completion, cost = self._storage_lines()
        try:
            providers = " -> ".join(self.providers()) or "None"
        except Exception as e:
            providers = f"unavailable ({e})"

        return "\n".join(
            [
                "Claw Status",
                "-------------------",
                f"Version: {__version__}",
                f"Environment: {environment}",
                f"Memory Usage: {rss_mb():.0f} MB",
                f"Database: {storage}",
                f"Active LLM Fallback: {providers}",
                "-------------------",
                "Today's Usage:",
                f"- Tokens: {prompt} prompt / {completion} comp",
                f"- Est. Cost: ${cost:.4f}",
            ]
        )
