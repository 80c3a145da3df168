"""
Request coordinators for the Ingestion Service.
"""

from .base import GuardedStore
from .read_path import ReadPathCoordinator
from .write_path import WritePathCoordinator

__all__ = ["GuardedStore", "ReadPathCoordinator", "WritePathCoordinator"]
