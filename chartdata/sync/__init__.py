from chartdata.sync.freshness import FreshnessPolicy, FreshnessWindow
from chartdata.sync.orchestrator import (
    FULL_HISTORY_POINTS,
    FULL_HISTORY_TIMEFRAME,
    RefreshReport,
    SyncOrchestrator,
)
from chartdata.sync.scheduler import JobScheduler, JobStatus, ScheduledJob
from chartdata.sync.training import TrainingDataCollector, TrainingOutcome, TrainingReport

__all__ = [
    "FreshnessPolicy",
    "FreshnessWindow",
    "FULL_HISTORY_POINTS",
    "FULL_HISTORY_TIMEFRAME",
    "RefreshReport",
    "SyncOrchestrator",
    "JobScheduler",
    "JobStatus",
    "ScheduledJob",
    "TrainingDataCollector",
    "TrainingOutcome",
    "TrainingReport",
]
