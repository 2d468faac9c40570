"""Configuration: process settings and the persisted queue settings record."""

from task_conductor.config.settings import (
    MAX_CRON_INTERVAL_SECONDS,
    MIN_CRON_INTERVAL_SECONDS,
    ConductorSettings,
    QueueSettings,
    SchedulerConfig,
    StoreConfig,
    WorkerConfig,
)

__all__ = [
    "MAX_CRON_INTERVAL_SECONDS",
    "MIN_CRON_INTERVAL_SECONDS",
    "ConductorSettings",
    "QueueSettings",
    "SchedulerConfig",
    "StoreConfig",
    "WorkerConfig",
]
