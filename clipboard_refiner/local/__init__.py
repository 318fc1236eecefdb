"""Local on-device model support: worker process supervision and protocol."""

from .supervisor import LocalWorkerSupervisor, WorkerState, validate_model_path

__all__ = ["LocalWorkerSupervisor", "WorkerState", "validate_model_path"]
