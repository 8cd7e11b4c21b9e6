"""External-tool backends used by the replication engine.

    - SgdiskBackend: read, zap and rewrite GUID partition tables
    - LinuxFilesystemBackend: detect, create, check and relabel filesystems
    - UdevRescanBackend: flush, re-read partition tables and wait for device nodes
"""

from .filesystem import LinuxFilesystemBackend
from .rescan import UdevRescanBackend
from .sgdisk import SgdiskBackend

__all__ = [
    "LinuxFilesystemBackend",
    "SgdiskBackend",
    "UdevRescanBackend",
]
