"""
CSV and JSON logging for scoring runs.

tracker.csv gets the top-K signals of every run with empty result columns
that a separate process fills in later. JSON reports keep the full ranked
output and filter comparisons.
"""
import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Sequence

from .schemas import ComparisonReport, TradeSignal


logger = logging.getLogger(__name__)


class SignalTracker:
    """Handles tracker and report files under the configured log directory."""

    TRACKER_HEADERS = [
        "date", "filter", "rank", "ticker", "signal", "score", "pattern",
        "entry", "stop", "target_1", "target_2", "stretch_target",
        "result", "pnl_pct", "status",
    ]

    def __init__(self, log_dir: str):
        self.log_dir = Path(log_dir)
        self._ensure_log_dir()
        self._ensure_headers()

    @property
    def tracker_path(self) -> Path:
        return self.log_dir / "tracker.csv"

    def _ensure_log_dir(self):
        """Create log directories if they don't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        (self.log_dir / "signals").mkdir(exist_ok=True)
        (self.log_dir / "comparisons").mkdir(exist_ok=True)

    def _ensure_headers(self):
        if not self.tracker_path.exists():
            with open(self.tracker_path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(self.TRACKER_HEADERS)

    def log_top_signals(self, signals: Sequence[TradeSignal], filter_name: str, top_k: int) -> int:
        """Append the top-K signals of a run. Returns rows written."""
        date = datetime.utcnow().strftime("%Y-%m-%d")
        rows = []
        for signal in list(signals)[:top_k]:
            rows.append([
                date,
                filter_name,
                signal.rank,
                signal.ticker,
                signal.signal,
                signal.score,
                signal.pattern,
                signal.entry,
                signal.stop,
                signal.target_1,
                signal.target_2,
                signal.stretch_target,
                "",
                "",
                "",
            ])

        with open(self.tracker_path, "a", newline="") as f:
            writer = csv.writer(f)
            writer.writerows(rows)
        return len(rows)

    def write_signals(self, signals: Sequence[TradeSignal], filter_name: str) -> Path:
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        path = self.log_dir / "signals" / f"signals_{timestamp}.json"
        data = {
            "generated_at": datetime.utcnow().isoformat(),
            "filter": filter_name,
            "signals": [s.model_dump(mode="json") for s in signals],
        }
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        logger.info(f"Signals written: {path}")
        return path

    def write_comparison(self, report: ComparisonReport) -> Path:
        path = self.log_dir / "comparisons" / f"comparison_{report.report_id}.json"
        with open(path, "w") as f:
            json.dump(report.model_dump(mode="json"), f, indent=2, default=str)
        logger.info(f"Comparison report written: {path}")
        return path

    def get_tracker_rows(self, limit: int = 50) -> List[dict]:
        """Get recent tracker rows."""
        if not self.tracker_path.exists():
            return []
        with open(self.tracker_path, "r") as f:
            reader = csv.DictReader(f)
            rows = list(reader)
        return rows[-limit:] if len(rows) > limit else rows
