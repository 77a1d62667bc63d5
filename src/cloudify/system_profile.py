"""
Host capacity reporting.

Reads CPU count, total memory and free disk space of the host. Each probe
is independent; a probe that cannot read its source reports 0.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .models import HostProfile

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3


class HostProfileProvider:
    """Snapshot of the host the environments run on."""

    def __init__(self, disk_path: str = ".", meminfo_path: str = "/proc/meminfo"):
        self.disk_path = disk_path
        self.meminfo_path = Path(meminfo_path)

    def get_host_profile(self) -> HostProfile:
        available_disk_gb = self._available_disk_gb()
        return HostProfile(
            cpu_count=os.cpu_count() or 0,
            total_memory_gb=self._total_memory_gb(),
            available_disk_gb=available_disk_gb,
            storage_hint=f"{available_disk_gb} GB free at {os.path.abspath(self.disk_path)}",
        )

    def _total_memory_gb(self) -> int:
        kilobytes = self._read_meminfo_total_kb()
        if kilobytes is None:
            return 0
        return round(kilobytes * 1024 / BYTES_PER_GB)

    def _read_meminfo_total_kb(self) -> Optional[int]:
        try:
            with open(self.meminfo_path, "r") as f:
                for line in f:
                    if line.startswith("MemTotal:"):
                        return int(line.split()[1])
        except (OSError, ValueError, IndexError) as e:
            logger.debug(f"Cannot read memory size from {self.meminfo_path}: {e}")
        return None

    def _available_disk_gb(self) -> int:
        try:
            usage = shutil.disk_usage(self.disk_path)
        except OSError as e:
            logger.debug(f"Cannot read disk usage for {self.disk_path}: {e}")
            return 0
        return int(usage.free // BYTES_PER_GB)
