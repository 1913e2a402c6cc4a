from .incidents import Incident
from .worker_state import WorkerState

__all__ = [
    "Incident",
    "WorkerState",
]
