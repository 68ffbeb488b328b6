"""scheduler-watcher package exports."""

__version__ = "0.1.0"

from .cli import main as cli_main
from .directory_watcher import DirectoryWatcher
from .models import Task
from .scheduler import Scheduler, create_task_action, schedule_task_creation
from .store import PersistenceError, TaskStore
from .watcher import ChangeEvent, ChangeKind, EventSource

__all__ = [
    "__version__",
    "ChangeEvent",
    "ChangeKind",
    "DirectoryWatcher",
    "EventSource",
    "PersistenceError",
    "Scheduler",
    "Task",
    "TaskStore",
    "cli_main",
    "create_task_action",
    "schedule_task_creation",
]
