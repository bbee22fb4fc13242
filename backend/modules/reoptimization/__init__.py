"""modules/reoptimization: Change detection and rebuild scheduling for saved plans."""

from modules.reoptimization.refresh_service import (
    ChangeDetectionResult, RefreshService, Severity, TrafficChange, WeatherChange,
)
from modules.reoptimization.refresh_scheduler import RefreshScheduler, SchedulerStats

__all__ = [
    "ChangeDetectionResult", "RefreshService", "Severity", "TrafficChange", "WeatherChange",
    "RefreshScheduler", "SchedulerStats",
]
