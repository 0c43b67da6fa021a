"""Background workers."""
from .distribution_worker import run_distribution_sweep, start_distribution_worker

__all__ = ["run_distribution_sweep", "start_distribution_worker"]
