"""
System utilities module for docka-backup.

Sizes the worker pool from the machine's resources and estimates directory
sizes for reporting.
"""

import os
from pathlib import Path
from typing import Union

import psutil

from .constants import RAM_WORKER_THRESHOLDS
from .logging import get_logger

logger = get_logger(__name__)


class SystemUtils:
    """Resource checks used when sizing a run."""

    @staticmethod
    def get_available_ram() -> float:
        """
        Get total system RAM in gigabytes.

        Returns:
            RAM in GB
        """
        try:
            memory = psutil.virtual_memory()
            return memory.total / (1024 ** 3)
        except Exception as e:
            logger.error(f"Failed to get RAM info: {e}")
            return 2.0  # Conservative default

    @staticmethod
    def get_cpu_count() -> int:
        try:
            return psutil.cpu_count(logical=True) or 1
        except Exception:
            return 1

    @staticmethod
    def get_optimal_workers() -> int:
        """
        Calculate the number of parallel target workers.

        Returns:
            Recommended number of workers
        """
        ram_gb = SystemUtils.get_available_ram()
        cpu_count = SystemUtils.get_cpu_count()

        ram_workers = 1
        for threshold_gb, workers in RAM_WORKER_THRESHOLDS:
            if ram_gb <= threshold_gb:
                ram_workers = workers
                break

        optimal = max(1, min(ram_workers, cpu_count))
        logger.debug(f"System has {ram_gb:.1f}GB RAM, {cpu_count} CPUs. "
                     f"Using {optimal} workers.")
        return optimal

    @staticmethod
    def estimate_directory_size(path: Union[str, Path]) -> int:
        """
        Sum of file sizes below ``path``; unreadable entries count as zero.
        """
        total_size = 0
        for dirpath, _dirnames, filenames in os.walk(path):
            for filename in filenames:
                try:
                    total_size += os.lstat(os.path.join(dirpath, filename)).st_size
                except OSError:
                    continue
        return total_size
