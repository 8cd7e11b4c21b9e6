"""
Pytest configuration and shared fixtures for gpt-replicator tests.

This module provides in-memory stand-ins for the partition-table and
filesystem backends plus the disk layouts used across test modules.
"""

import uuid
from typing import Dict, List, Tuple
from unittest.mock import MagicMock

import pytest

from gpt_replicator.domain import BlockDevice, FilesystemInfo, PartitionEntry
from gpt_replicator.storage.exceptions import BackendCommandError


LINUX_FS = "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
EFI_SYSTEM = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
LINUX_SWAP = "0657FD6D-A4AB-43C4-84E5-0933C84B4F4F"
BASIC_DATA = "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7"

GIB_SECTORS = 2 * 1024 * 1024  # 1 GiB in 512-byte sectors


# ==============================================================================
# Fake Backends
# ==============================================================================


class FakeTableBackend:
    """In-memory GPT backend that rejects overlapping tables like sgdisk does."""

    def __init__(self, devices: Dict[str, Tuple[int, List[PartitionEntry]]]):
        self.sizes = {path: size for path, (size, _) in devices.items()}
        self.tables = {path: list(entries) for path, (_, entries) in devices.items()}
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        # Last usable sector per device while its backup header sits at an old disk end
        self.last_usable: Dict[str, int] = {}

    def _maybe_fail(self, operation, device):
        if operation in self.fail_on:
            raise BackendCommandError(["sgdisk", operation, device], returncode=4, stderr="boom")

    def total_sectors(self, device):
        self._maybe_fail("total_sectors", device)
        return self.sizes[device]

    def read_table(self, device):
        self._maybe_fail("read_table", device)
        return sorted(self.tables.get(device, []), key=lambda entry: entry.start)

    def zap(self, device):
        self.calls.append(("zap", device))
        self._maybe_fail("zap", device)
        self.tables[device] = []
        self.last_usable.pop(device, None)

    def write_entries(self, device, deletions, creations):
        deletions = list(deletions)
        creations = list(creations)
        self.calls.append(("write_entries", device, deletions, [entry.number for entry in creations]))
        self._maybe_fail("write_entries", device)
        limit = self.last_usable.get(device)
        if limit is not None and any(entry.end > limit for entry in creations):
            raise BackendCommandError(["sgdisk", device], returncode=4, stderr="beyond last usable sector")
        table = [entry for entry in self.tables.get(device, []) if entry.number not in deletions]
        table.extend(creations)
        ordered = sorted(table, key=lambda entry: entry.start)
        for previous, current in zip(ordered, ordered[1:]):
            if previous.overlaps(current):
                raise BackendCommandError(["sgdisk", device], returncode=4, stderr="overlap")
        self.tables[device] = ordered

    def randomize_guids(self, device):
        self.calls.append(("randomize_guids", device))
        self._maybe_fail("randomize_guids", device)

    def relocate_backup(self, device):
        self.calls.append(("relocate_backup", device))
        self._maybe_fail("relocate_backup", device)
        self.last_usable.pop(device, None)

    def rename_partition(self, device, number, name):
        self.calls.append(("rename_partition", device, number, name))
        self._maybe_fail("rename_partition", device)
        self.tables[device] = [
            PartitionEntry(entry.number, entry.start, entry.end, entry.type_code, name)
            if entry.number == number
            else entry
            for entry in self.tables[device]
        ]


class FakeFilesystemBackend:
    """In-memory blkid/mkfs stand-in keyed by partition node."""

    def __init__(self, filesystems: Dict[str, FilesystemInfo] = None):
        self.filesystems = dict(filesystems or {})
        self.calls: List[tuple] = []
        self.fail_on: set = set()

    def _maybe_fail(self, operation, node):
        if (operation, node) in self.fail_on:
            raise BackendCommandError([operation, node], returncode=1, stderr="tool failed")

    def detect(self, node):
        self._maybe_fail("detect", node)
        return self.filesystems.get(node, FilesystemInfo())

    def create(self, node, family):
        self.calls.append(("create", node, family))
        self._maybe_fail("create", node)
        self.filesystems[node] = FilesystemInfo(fstype=family.value, uuid=str(uuid.uuid4()))

    def check(self, node):
        self.calls.append(("check", node))
        self._maybe_fail("check", node)

    def set_random_uuid(self, node):
        self.calls.append(("set_random_uuid", node))
        self._maybe_fail("set_random_uuid", node)
        self._update(node, uuid=str(uuid.uuid4()))

    def set_swap_identity(self, node, new_uuid, label=None):
        self.calls.append(("set_swap_identity", node, new_uuid, label))
        self._maybe_fail("set_swap_identity", node)
        self._update(node, uuid=new_uuid, label=label)

    def set_label(self, node, family, label):
        self.calls.append(("set_label", node, family, label))
        self._maybe_fail("set_label", node)
        self._update(node, label=label)

    def _update(self, node, **changes):
        current = self.filesystems.get(node, FilesystemInfo())
        values = {
            "fstype": current.fstype,
            "label": current.label,
            "uuid": current.uuid,
            "partition_name": current.partition_name,
        }
        values.update(changes)
        self.filesystems[node] = FilesystemInfo(**values)


# ==============================================================================
# Layout Fixtures
# ==============================================================================


@pytest.fixture
def single_app_layout() -> BlockDevice:
    """One APP partition from 1 MiB to 4 GiB on a 4 GiB + 1 MiB card."""
    return BlockDevice(
        path="/dev/mmcblk0",
        total_sectors=4 * GIB_SECTORS + 2048,
        partitions=(PartitionEntry(1, 2048, 4 * GIB_SECTORS - 1, LINUX_FS, "APP"),),
    )


@pytest.fixture
def three_partition_layout() -> BlockDevice:
    """ESP, APP in the middle, recovery after it."""
    return BlockDevice(
        path="/dev/mmcblk0",
        total_sectors=8398848,
        partitions=(
            PartitionEntry(1, 2048, 206847, EFI_SYSTEM, "esp"),
            PartitionEntry(2, 206848, 8388607, LINUX_FS, "APP"),
            PartitionEntry(3, 8388608, 8396799, LINUX_FS, "recovery"),
        ),
    )


@pytest.fixture
def jetson_layout() -> BlockDevice:
    """APP is partition 1 but sits between boot partitions 2/3 and 4."""
    return BlockDevice(
        path="/dev/mmcblk0",
        total_sectors=30535680,
        partitions=(
            PartitionEntry(2, 40, 4135, BASIC_DATA, "A_mb1"),
            PartitionEntry(3, 4136, 28671, BASIC_DATA, "A_mb1_bct"),
            PartitionEntry(1, 28672, 29388799, LINUX_FS, "APP"),
            PartitionEntry(4, 29388800, 29913087, EFI_SYSTEM, "esp"),
        ),
    )


@pytest.fixture
def fake_table_backend():
    """Factory fixture: fake_table_backend({path: (total_sectors, entries)})."""
    return FakeTableBackend


@pytest.fixture
def fake_fs_backend():
    """Factory fixture: fake_fs_backend({node: FilesystemInfo})."""
    return FakeFilesystemBackend


@pytest.fixture
def mock_rescan_backend() -> MagicMock:
    """Rescan backend whose every call succeeds."""
    return MagicMock()


# ==============================================================================
# Tool Output Fixtures
# ==============================================================================


@pytest.fixture
def sgdisk_print_output() -> str:
    """Output of `sgdisk --print` for a three partition disk."""
    return """Disk /dev/mmcblk0: 8398848 sectors, 4.0 GiB
Sector size (logical/physical): 512/512 bytes
Disk identifier (GUID): 3A0D5C55-5A4B-4D43-9E7E-1D2F4F0A6B11
Partition table holds up to 128 entries
Main partition table begins at sector 2 and ends at sector 33
First usable sector is 34, last usable sector is 8398814
Partitions will be aligned on 2048-sector boundaries
Total free space is 4061 sectors (2.0 MiB)

Number  Start (sector)    End (sector)  Size       Code  Name
   1            2048          206847   100.0 MiB   EF00  esp
   2          206848         8388607   3.9 GiB     8300  APP
   3         8388608         8396799   4.0 MiB     8300  recovery data
"""


@pytest.fixture
def sgdisk_empty_print_output() -> str:
    """Output of `sgdisk --print` for a freshly zapped disk."""
    return """Creating new GPT entries in memory.
Disk /dev/nvme0n1: 16777216 sectors, 8.0 GiB
Sector size (logical/physical): 512/512 bytes
Disk identifier (GUID): 8E2C1B7A-1111-4B0E-9C3B-3B6D1B0F7A22
Partition table holds up to 128 entries
Main partition table begins at sector 2 and ends at sector 33
First usable sector is 34, last usable sector is 16777182
Partitions will be aligned on 2048-sector boundaries
Total free space is 16777149 sectors (8.0 GiB)

Number  Start (sector)    End (sector)  Size       Code  Name
"""


@pytest.fixture
def sgdisk_info_output() -> str:
    """Output of `sgdisk --info=2` for the APP partition."""
    return """Partition GUID code: 0FC63DAF-8483-4772-8E79-3D69D8477DE4 (Linux filesystem)
Partition unique GUID: 9B1C1B5E-2D0F-4F4B-8F7B-6C1E2A3B4C5D
First sector: 206848 (at 101.0 MiB)
Last sector: 8388607 (at 4.0 GiB)
Partition size: 8181760 sectors (3.9 GiB)
Attribute flags: 0000000000000000
Partition name: 'APP'
"""
