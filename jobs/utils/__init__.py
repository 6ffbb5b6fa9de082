"""Task utilities."""

from jobs.utils.database import (
    create_task_engine,
    create_task_session_maker,
    task_engine,
    task_session_maker,
)
from jobs.utils.locking import run_exclusive
from jobs.utils.retry import retry_transient


__all__ = [
    "create_task_engine",
    "create_task_session_maker",
    "retry_transient",
    "run_exclusive",
    "task_engine",
    "task_session_maker",
]
