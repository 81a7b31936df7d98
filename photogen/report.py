"""Run timing and session summary.

This module keeps a tally of what a session reported while it was being
observed and renders it as a short summary once the stream ends.
"""

from __future__ import annotations

import time
from typing import List, Optional, Union


class Timer:
    """Wall-clock timer for one observed run."""

    def __init__(self):
        self.start_time: Optional[float] = None

    def start(self) -> None:
        self.start_time = time.perf_counter()

    def stop(self) -> float:
        """Seconds since ``start``, or 0.0 if it was never started."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time


class SessionReport:
    """Counts and outcomes collected while draining a session."""

    def __init__(self):
        self.metrics = {
            "invalid_samples": 0,
            "skipped_samples": 0,
            "downsampled": False,
            "progress_updates": 0,
            "completed_requests": 0,
            "failed_requests": 0,
            "cancelled": False,
            "runtime_s": 0.0,
            "outputs": [],
        }

    def update(self, metric_name: str, value: Union[int, float, bool, List]) -> None:
        self.metrics[metric_name] = value

    def increment(self, metric_name: str) -> None:
        self.metrics[metric_name] += 1

    def add_output(self, path: str) -> None:
        self.metrics["outputs"].append(str(path))

    def summary(self) -> str:
        """Generate a human-readable summary of the session.

        Returns:
            Summary string
        """
        lines = [
            "Session Summary:",
            f"  Invalid samples: {self.metrics['invalid_samples']}",
            f"  Skipped samples: {self.metrics['skipped_samples']}",
        ]

        if self.metrics["downsampled"]:
            lines.append("  Automatic downsampling applied")

        lines.append(f"  Completed requests: {self.metrics['completed_requests']}")
        lines.append(f"  Failed requests: {self.metrics['failed_requests']}")

        if self.metrics["cancelled"]:
            lines.append("  Processing was cancelled")

        for path in self.metrics["outputs"]:
            lines.append(f"  Output: {path}")

        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.2f}s")

        return "\n".join(lines)
