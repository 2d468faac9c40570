"""Development queue: the scan loop that enqueues ready features and the worker that runs them."""

from task_conductor.queue.scheduler import QueueScheduler
from task_conductor.queue.worker import CLI_TOOLS, CliToolSpec, QueueWorker, build_command, resolve_repo_dir

__all__ = [
    "CLI_TOOLS",
    "CliToolSpec",
    "QueueScheduler",
    "QueueWorker",
    "build_command",
    "resolve_repo_dir",
]
