"""
Queue worker.

Claims one pending queue item at a time and runs the configured external
code-generation CLI for that feature inside the feature's repository.

Security controls:
    - The tool identifier must be in ``CLI_TOOLS``; nothing else is ever
      executed.
    - The repository directory is ``base/repo_name`` resolved, and must stay
      strictly inside the resolved base folder.
    - The process is spawned from an argument vector built from a fixed
      template; only the repository name and feature slug reach it, and no
      shell is involved.
    - Runs are bounded by a wall-clock limit (SIGTERM, then SIGKILL).
    - Captured stderr is sanitized before it is persisted.

Every validation failure marks the item failed and returns without spawning
anything. Nothing here is retried automatically.
"""

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from task_conductor.config.settings import QueueSettings, WorkerConfig
from task_conductor.exceptions import ExecutionError, ExecutionTimeoutError
from task_conductor.models.queue import QueueEvent, QueueItem
from task_conductor.store import EntityStore
from task_conductor.utils.async_subprocess import ProcessOutcome, run_bounded
from task_conductor.utils.sanitize import sanitize_error_message

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CliToolSpec:
    """How to launch one allow-listed tool.

    Attributes:
        binary: Executable name or path.
        args: Argument template; ``{prompt}`` is the only placeholder.
    """

    binary: str
    args: tuple[str, ...]

    def argv(self, prompt: str) -> list[str]:
        return [self.binary, *(arg.format(prompt=prompt) for arg in self.args)]


CLI_TOOLS: dict[str, CliToolSpec] = {
    "claude": CliToolSpec(
        "claude",
        ("--print", "--allowedTools", "*", "--dangerously-skip-permissions", "-p", "{prompt}"),
    ),
    "copilot": CliToolSpec("copilot", ("--message", "{prompt}")),
}


def build_prompt(repo_name: str, feature_slug: str) -> str:
    return f"/dev-workflow repoName: {repo_name}, featureName: {feature_slug}"


def build_command(cli_tool: str, repo_name: str, feature_slug: str) -> list[str]:
    """Argument vector for running ``cli_tool`` on a feature.

    Raises:
        ExecutionError: If the tool is not allow-listed.
    """
    spec = CLI_TOOLS.get(cli_tool)
    if spec is None:
        raise ExecutionError(f"Unknown CLI tool: {cli_tool}")
    return spec.argv(build_prompt(repo_name, feature_slug))


def resolve_repo_dir(base_folder: str, repo_name: str) -> Path:
    """Resolve the working directory for a repository.

    Raises:
        ExecutionError: If the base folder is unset, the resolved path is not
            strictly inside the base folder, or the directory does not exist.
    """
    if not base_folder:
        raise ExecutionError("baseReposFolder is not configured in settings")

    base = Path(base_folder).resolve()
    try:
        repo_dir = (base / repo_name).resolve()
    except (OSError, ValueError) as e:
        raise ExecutionError(f"Path traversal detected: repo '{repo_name}' cannot be resolved") from e

    if repo_dir == base or not repo_dir.is_relative_to(base):
        raise ExecutionError(f"Path traversal detected: repo '{repo_name}' resolves outside base folder")
    if not repo_dir.is_dir():
        raise ExecutionError(f"Repository directory not found for repo '{repo_name}'")
    return repo_dir


class QueueWorker:
    """Poll loop that processes at most one queue item at a time.

    Args:
        store: Entity store holding the queue and the settings record.
        config: Worker tunables (poll interval, limits, worker id).
        events: Optional channel that receives started/completed/failed
            QueueEvents.
    """

    def __init__(
        self,
        store: EntityStore,
        config: WorkerConfig | None = None,
        events: asyncio.Queue[QueueEvent] | None = None,
    ) -> None:
        self.store = store
        self.config = config or WorkerConfig()
        self.worker_id = self.config.effective_worker_id
        self.events = events
        self._task: asyncio.Task[None] | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._current: QueueItem | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_busy(self) -> bool:
        """Whether an item is currently being processed."""
        return self._current is not None

    @property
    def active_pid(self) -> int | None:
        """Pid of the running external process, if any."""
        return None if self._process is None else self._process.pid

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="queue-worker")
        log.info("worker_started", worker_id=self.worker_id)

    async def stop(self) -> None:
        """Stop polling. An in-flight process is terminated and its item failed."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("worker_stopped", worker_id=self.worker_id)

    async def _run(self) -> None:
        while True:
            processed = False
            try:
                processed = await self.process_next()
            except Exception as e:
                log.error("worker_tick_failed", error=str(e), exc_info=True)
            if not processed:
                await asyncio.sleep(self.config.poll_interval_seconds)

    async def process_next(self) -> bool:
        """Claim and process one item.

        Returns:
            True if an item was claimed (whatever its outcome), False if the
            worker is disabled or nothing was pending.
        """
        settings = await asyncio.to_thread(self.store.settings.get_queue_settings)
        if not settings.worker_enabled:
            return False

        item = await self._claim()
        if item is None:
            return False

        self._current = item
        structlog.contextvars.bind_contextvars(item_id=item.id)
        try:
            await self._execute(item, settings)
        except asyncio.CancelledError:
            await self._fail(item, "Worker stopped before completion")
            raise
        except ExecutionError as e:
            await self._fail(item, e.message)
        except OSError as e:
            await self._fail(item, f"Failed to spawn {item.cli_tool}: {e}")
        except Exception as e:
            log.error("worker_item_crashed", error=str(e), exc_info=True)
            await self._fail(item, f"Worker error: {type(e).__name__}: {e}")
        finally:
            self._current = None
            self._process = None
            structlog.contextvars.unbind_contextvars("item_id")
        return True

    async def _execute(self, item: QueueItem, settings: QueueSettings) -> None:
        argv = build_command(item.cli_tool, item.repo_name, item.feature_slug)
        repo_dir = resolve_repo_dir(settings.base_repos_folder, item.repo_name)

        log.info(
            "worker_item_started",
            repo_name=item.repo_name,
            feature_slug=item.feature_slug,
            cli_tool=item.cli_tool,
        )
        self._publish("started", item)

        outcome = await self._spawn(argv, repo_dir)

        if outcome.timed_out:
            raise ExecutionTimeoutError(self.config.process_timeout_seconds, item_id=item.id)
        if outcome.returncode != 0:
            message = f"Process exited with code {outcome.returncode}. {outcome.stderr}".strip()
            raise ExecutionError(message, item_id=item.id)

        await asyncio.to_thread(self.store.queue.complete, item.id)
        log.info("worker_item_completed", repo_name=item.repo_name, feature_slug=item.feature_slug)
        self._publish("completed", item)

    async def _spawn(self, argv: Sequence[str], repo_dir: Path) -> ProcessOutcome:
        def remember(process: asyncio.subprocess.Process) -> None:
            self._process = process
            log.debug("worker_process_spawned", pid=process.pid, binary=argv[0])

        return await run_bounded(
            argv,
            cwd=repo_dir,
            timeout=self.config.process_timeout_seconds,
            kill_grace=self.config.kill_grace_seconds,
            stderr_limit=self.config.stderr_capture_bytes,
            on_start=remember,
        )

    async def _claim(self) -> QueueItem | None:
        """Claim the next item, failing it if the worker is cancelled mid-claim.

        The claim runs in a thread that finishes even when the awaiting task is
        cancelled, so the row may already be ``running`` by then.
        """
        claim = asyncio.create_task(asyncio.to_thread(self.store.queue.claim_next, self.worker_id))
        try:
            return await asyncio.shield(claim)
        except asyncio.CancelledError:
            item = await claim
            if item is not None:
                await self._fail(item, "Worker stopped before completion")
            raise

    async def _fail(self, item: QueueItem, message: str) -> None:
        # a second cancel must not leave the item running
        failed = await asyncio.shield(asyncio.to_thread(self.store.queue.fail, item.id, message))
        if not failed:
            log.debug("worker_item_not_running", item_id=item.id)
            return
        safe = sanitize_error_message(message, self.config.error_message_limit)
        log.warning("worker_item_failed", repo_name=item.repo_name, feature_slug=item.feature_slug, error=safe)
        self._publish("failed", item, error=safe)

    def _publish(self, kind: str, item: QueueItem, **detail: object) -> None:
        if self.events is None:
            return
        self.events.put_nowait(
            QueueEvent(
                kind=kind,
                item_id=item.id,
                repo_name=item.repo_name,
                feature_slug=item.feature_slug,
                detail=dict(detail),
            )
        )
