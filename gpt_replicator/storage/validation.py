"""Safety validation run before the first destructive call of a replication.

This module provides validation functions to prevent dangerous operations:
- Validates source != destination
- Verifies the destination has no mounted partitions
- Checks the destination can hold the source layout

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values, making error handling more explicit.

Example:
    from gpt_replicator.storage.validation import validate_replication

    validate_replication(source_layout, destination_layout, reserved_backup_sectors=34)
"""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING

from .devices import get_block_device, get_children, resolve_device_node
from .exceptions import (
    DeviceBusyError,
    InsufficientSpaceError,
    SourceDestinationSameError,
)

if TYPE_CHECKING:
    from gpt_replicator.domain import BlockDevice


def _base_device(node: str) -> str:
    """Strip a partition suffix: sda1 -> sda, nvme0n1p1 -> nvme0n1."""
    node = os.path.realpath(resolve_device_node(node))
    match = re.fullmatch(r"(.*\d)p\d+", node)
    if match:
        return match.group(1)
    if re.fullmatch(r".*/(sd|vd|hd|xvd)[a-z]+\d+", node):
        return node.rstrip("0123456789")
    return node


def validate_devices_different(source: str, destination: str) -> None:
    """Validate that source and destination refer to different disks.

    Raises:
        SourceDestinationSameError: If both resolve to the same base device
    """
    if _base_device(source) == _base_device(destination):
        raise SourceDestinationSameError(source, destination)


def _is_mountpoint_active(mountpoint: str) -> bool:
    """Check if a mountpoint is currently active."""
    try:
        with open("/proc/mounts", "r", encoding="utf-8") as mounts_file:
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1 and parts[1] == mountpoint:
                    return True
    except FileNotFoundError:
        return os.path.ismount(mountpoint)
    return False


def validate_device_unmounted(device: str) -> None:
    """Validate that a device and all its partitions are unmounted.

    Devices lsblk does not know about are not checked.

    Raises:
        DeviceBusyError: If the device or any partition is mounted
    """
    record = get_block_device(device)
    if not record:
        return
    for entry in [record, *get_children(record)]:
        mountpoint = entry.get("mountpoint")
        if mountpoint and _is_mountpoint_active(mountpoint):
            raise DeviceBusyError(
                device, f"{entry.get('name')} is mounted at {mountpoint}"
            )


def validate_sufficient_space(
    source: BlockDevice,
    destination: BlockDevice,
    reserved_backup_sectors: int,
) -> None:
    """Validate that the destination can hold every source partition.

    Raises:
        InsufficientSpaceError: If the source's last used sector plus the
            reserved backup-table sectors does not fit on the destination
    """
    required = source.last_used_sector + 1 + reserved_backup_sectors
    if destination.total_sectors < required:
        raise InsufficientSpaceError(
            destination.path, destination.total_sectors, required
        )


def validate_replication(
    source: BlockDevice,
    destination: BlockDevice,
    *,
    reserved_backup_sectors: int,
    check_mounts: bool = True,
) -> None:
    """Perform all validations required before a replication run.

    Raises:
        Various exceptions from the exceptions module if validation fails
    """
    # 1. Check devices are different (CRITICAL)
    validate_devices_different(source.path, destination.path)

    # 2. Check destination is unmounted
    if check_mounts:
        validate_device_unmounted(destination.path)

    # 3. Check the layout fits
    validate_sufficient_space(source, destination, reserved_backup_sectors)
