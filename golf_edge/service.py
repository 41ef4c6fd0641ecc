"""
Outbound interface for callers outside the package (web handlers, jobs).
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional

from .config import Config, get_config
from .database import Database
from .live import LiveTrackingService
from .models import (
    BetRecommendation, LiveTrackingResult, RunArtifact, RunMode, Tier, Tour, TrackedEvent,
)
from .pipeline import WeeklyPipeline, get_pipeline

logger = logging.getLogger(__name__)


class RunService:
    """
    Triggers runs in the background and serves their results.

    Runs execute on a single background worker. Dry runs are never
    written to the database, so they are served from memory.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        pipeline: Optional[WeeklyPipeline] = None,
        live: Optional[LiveTrackingService] = None,
    ):
        self.config = config or get_config()
        self.db = db or Database(self.config.db_path)
        self.pipeline = pipeline or get_pipeline(self.config, self.db)
        self.live = live or LiveTrackingService(self.config, self.db)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="golf-edge-run")
        self._runs: Dict[str, RunArtifact] = {}
        self._futures: Dict[str, Future] = {}
        self._cancel: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def trigger_run(self, mode: Optional[RunMode] = None, dry_run: bool = False) -> RunArtifact:
        """Start a run and return its artifact while it is still running."""
        artifact = self.pipeline.prepare(mode=mode, dry_run=dry_run)
        cancel_event = threading.Event()
        with self._lock:
            self._runs[artifact.run_key] = artifact
            self._cancel[artifact.run_key] = cancel_event
            self._futures[artifact.run_key] = self._executor.submit(
                self.pipeline.execute, artifact, cancel_event
            )
        logger.info(f"Triggered {artifact.run_key}")
        return artifact

    def cancel_run(self, run_key: str) -> bool:
        """Ask a running run to stop submitting work."""
        with self._lock:
            cancel_event = self._cancel.get(run_key)
        if cancel_event is None:
            return False
        cancel_event.set()
        return True

    def wait(self, run_key: str, timeout: Optional[float] = None) -> Optional[RunArtifact]:
        """Block until a triggered run finishes."""
        with self._lock:
            future = self._futures.get(run_key)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_run(run_key)

    def get_run(self, run_key: str) -> Optional[RunArtifact]:
        """In-memory artifact for runs triggered here, otherwise the stored run."""
        with self._lock:
            artifact = self._runs.get(run_key)
        if artifact is not None:
            return artifact
        return self.db.get_run(run_key)

    def list_recommendations(
        self,
        run_key: Optional[str] = None,
        tier: Optional[Tier] = None,
        tour: Optional[Tour] = None,
    ) -> List[BetRecommendation]:
        """Recommendations for a run; the latest completed run by default."""
        if run_key is None:
            latest = self.db.get_latest_completed_run()
            if latest is None:
                return []
            run_key = latest.run_key

        with self._lock:
            artifact = self._runs.get(run_key)
        if artifact is not None and artifact.dry_run:
            return [
                r for r in artifact.recommendations
                if (tier is None or r.tier == tier) and (tour is None or r.tour == tour)
            ]
        return self.db.list_recommendations(run_key=run_key, tier=tier, tour=tour)

    def get_active_tracked_events(self) -> List[TrackedEvent]:
        return self.live.get_active_tracked_events()

    def get_live_tracking_for_event(self, event_id: int, tour: Tour) -> LiveTrackingResult:
        return self.live.get_live_tracking_for_event(event_id, tour)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
