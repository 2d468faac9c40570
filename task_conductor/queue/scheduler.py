"""
Queue scheduler.

Periodically scans every registered repository and feature and enqueues one
feature-level queue item when all of a feature's tasks have reached
ReadyForDevelopment. The enqueue operation itself is idempotent, so a scan
that sees the same ready feature twice does not create a second item while
the first one is pending or running.

The scan interval is re-read from the persisted queue settings before every
tick, with a floor applied so a misconfigured interval cannot turn the loop
into a busy scan.
"""

import asyncio
import contextlib

import structlog

from task_conductor.config.settings import SchedulerConfig
from task_conductor.enums import TaskStatus
from task_conductor.models.queue import QueueEvent
from task_conductor.store import EntityStore

log = structlog.get_logger(__name__)


class QueueScheduler:
    """Self-rescheduling scan loop that feeds the development queue.

    Args:
        store: Entity store to read tasks from and enqueue into.
        config: Loop tunables; defaults apply when omitted.
        events: Optional channel that receives a QueueEvent for every newly
            enqueued item.
    """

    def __init__(
        self,
        store: EntityStore,
        config: SchedulerConfig | None = None,
        events: asyncio.Queue[QueueEvent] | None = None,
    ) -> None:
        self.store = store
        self.config = config or SchedulerConfig()
        self.events = events
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the scan loop on the running event loop. No-op if started."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="queue-scheduler")
        log.info("scheduler_started")

    async def stop(self) -> None:
        """Stop the scan loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("scheduler_stopped")

    async def next_interval(self) -> float:
        """Seconds until the next scan, from the current settings record."""
        try:
            settings = await asyncio.to_thread(self.store.settings.get_queue_settings)
            interval = float(settings.cron_interval_seconds)
        except Exception as e:
            log.error("scheduler_interval_read_failed", error=str(e), exc_info=True)
            interval = self.config.min_interval_seconds
        return max(interval, self.config.min_interval_seconds)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(await self.next_interval())
            try:
                await self.scan()
            except Exception as e:
                log.error("scheduler_tick_failed", error=str(e), exc_info=True)

    async def scan(self) -> int:
        """Run one scan cycle.

        Returns:
            Number of newly enqueued items. Zero when the worker is disabled.
            Errors are logged and never raised; a failure on one feature does
            not stop the others from being checked.
        """
        enqueued = 0
        try:
            settings = await asyncio.to_thread(self.store.settings.get_queue_settings)
            if not settings.worker_enabled:
                return 0

            repos = await asyncio.to_thread(self.store.tasks.list_repos)
            for repo in repos:
                features = await asyncio.to_thread(self.store.tasks.list_features, repo.repo_name)
                for feature in features:
                    try:
                        if await self._enqueue_if_ready(repo.repo_name, feature.feature_slug, settings.cli_tool.value):
                            enqueued += 1
                    except Exception as e:
                        log.error(
                            "scheduler_feature_check_failed",
                            repo_name=repo.repo_name,
                            feature_slug=feature.feature_slug,
                            error=str(e),
                            exc_info=True,
                        )
        except Exception as e:
            log.error("scheduler_scan_failed", error=str(e), exc_info=True)

        if enqueued:
            log.info("scheduler_scan_enqueued", count=enqueued)
        return enqueued

    async def _enqueue_if_ready(self, repo_name: str, feature_slug: str, cli_tool: str) -> bool:
        tasks = self.store.tasks
        ready = await asyncio.to_thread(tasks.count_tasks, repo_name, feature_slug, TaskStatus.READY_FOR_DEVELOPMENT)
        if ready == 0:
            return False
        total = await asyncio.to_thread(tasks.count_tasks, repo_name, feature_slug)
        if ready != total:
            return False

        result = await asyncio.to_thread(self.store.queue.enqueue, repo_name, feature_slug, cli_tool)
        if result.already_queued:
            return False

        if self.events is not None:
            self.events.put_nowait(
                QueueEvent(
                    kind="enqueued",
                    item_id=result.id,
                    repo_name=repo_name,
                    feature_slug=feature_slug,
                    detail={"cliTool": cli_tool},
                )
            )
        return True
