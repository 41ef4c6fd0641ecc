"""
Data-quality issue collector.
One tracker per run (or per live refresh), passed explicitly to each step.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import DataQualityIssue, Severity

logger = logging.getLogger(__name__)

_SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
_LOG_LEVELS = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.INFO: logging.INFO,
}


class IssueTracker:
    """Append-only, thread-safe collection of DataQualityIssue records."""

    def __init__(self, run_key: Optional[str] = None):
        self.run_key = run_key
        self._issues: List[DataQualityIssue] = []
        self._lock = threading.Lock()

    def log(
        self,
        step: str,
        message: str,
        severity: Severity = Severity.WARNING,
        tour: Optional[str] = None,
        evidence: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> DataQualityIssue:
        """Record an issue and log it at the matching level."""
        issue = DataQualityIssue(
            step=step,
            message=message,
            severity=severity,
            tour=tour,
            evidence=evidence,
            code=code,
            run_key=self.run_key,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._issues.append(issue)
        prefix = f"[{step}]" if not tour else f"[{step}] [{tour}]"
        logger.log(_LOG_LEVELS[severity], f"{prefix} {message}")
        return issue

    def error(self, step: str, message: str, **kwargs) -> DataQualityIssue:
        return self.log(step, message, severity=Severity.ERROR, **kwargs)

    def warning(self, step: str, message: str, **kwargs) -> DataQualityIssue:
        return self.log(step, message, severity=Severity.WARNING, **kwargs)

    def info(self, step: str, message: str, **kwargs) -> DataQualityIssue:
        return self.log(step, message, severity=Severity.INFO, **kwargs)

    def issues(
        self,
        severity: Optional[Severity] = None,
        tour: Optional[str] = None,
        step: Optional[str] = None,
    ) -> List[DataQualityIssue]:
        """Snapshot of recorded issues, optionally filtered."""
        with self._lock:
            snapshot = list(self._issues)
        return [
            issue for issue in snapshot
            if (severity is None or issue.severity == severity)
            and (tour is None or issue.tour == tour)
            and (step is None or issue.step == step)
        ]

    def top(self, limit: int = 10) -> List[DataQualityIssue]:
        """Most severe issues first, in the order they were logged."""
        snapshot = self.issues()
        ranked = sorted(
            enumerate(snapshot),
            key=lambda pair: (_SEVERITY_RANK[pair[1].severity], pair[0])
        )
        return [issue for _, issue in ranked[:limit]]

    def counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for issue in self.issues():
            counts[issue.severity.value] += 1
        return counts

    def summary(self, limit: int = 5) -> str:
        """One-line digest of the worst issues, for run error summaries."""
        return "; ".join(f"[{i.step}] {i.message}" for i in self.top(limit))

    def __len__(self) -> int:
        with self._lock:
            return len(self._issues)
