"""Custom exceptions for disk replication.

This module defines a hierarchy of exceptions for storage operations to provide
more specific error handling and better error messages.

Exception Hierarchy:
    StorageError (base)
        ├── BackendCommandError
        ├── DeviceError
        │   ├── DeviceUnreadableError
        │   ├── DeviceBusyError
        │   └── SourceDestinationSameError
        ├── InsufficientSpaceError
        ├── TableWriteConflictError
        ├── RescanFailedError
        ├── FilesystemCreateError
        └── IdentityRewriteError

Fatal errors (DeviceUnreadableError, TableWriteConflictError, RescanFailedError,
InsufficientSpaceError, DeviceBusyError, SourceDestinationSameError) abort a run.
FilesystemCreateError and IdentityRewriteError are recorded per partition and
never propagate out of the replication loop.

Usage:
    from gpt_replicator.storage.exceptions import SourceDestinationSameError

    if source == destination:
        raise SourceDestinationSameError(source, destination)
"""

from __future__ import annotations

from typing import Optional, Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class BackendCommandError(StorageError):
    """An external partitioning, filesystem or rescan tool failed."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int] = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        details = []
        if stderr:
            details.append(f"stderr: {' '.join(stderr.split())}")
        if stdout:
            details.append(f"stdout: {' '.join(stdout.split())}")
        summary = "Command failed" if returncode is not None else "Command not runnable"
        message = f"{summary} ({' '.join(self.command)})"
        if returncode is not None:
            message += f" rc={returncode}"
        if details:
            message += f": {' | '.join(details)}"
        super().__init__(message)


class DeviceError(StorageError):
    """Base exception for device-related errors."""


class DeviceUnreadableError(DeviceError):
    """The size or partition table of a device could not be read."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Cannot read {device}: {reason}")


class DeviceBusyError(DeviceError):
    """Device is currently in use or mounted."""

    def __init__(self, device: str, reason: str = ""):
        self.device = device
        self.reason = reason
        msg = f"Device {device} is busy"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SourceDestinationSameError(DeviceError):
    """Source and destination devices are the same."""

    def __init__(self, source: str, destination: str):
        self.source = source
        self.destination = destination
        super().__init__(
            f"Source and destination cannot be the same device: "
            f"{source} == {destination}"
        )


class InsufficientSpaceError(StorageError):
    """Destination device cannot hold the source partition layout."""

    def __init__(
        self,
        destination: str,
        destination_sectors: int,
        required_sectors: int,
    ):
        self.destination = destination
        self.destination_sectors = destination_sectors
        self.required_sectors = required_sectors
        super().__init__(
            f"Destination {destination} ({destination_sectors} sectors) "
            f"is too small for the source layout ({required_sectors} sectors required)"
        )


class TableWriteConflictError(StorageError):
    """The partition-table backend rejected a planned change.

    The destination may hold a partially applied table and must be treated as
    unsafe until it is rewritten.
    """

    def __init__(self, device: str, step: str, reason: str):
        self.device = device
        self.step = step
        self.reason = reason
        super().__init__(f"Partition table {step} failed on {device}: {reason}")


class RescanFailedError(StorageError):
    """The kernel could not be made to see the new partition table."""

    def __init__(self, device: str, reason: str):
        self.device = device
        self.reason = reason
        super().__init__(f"Rescan of {device} failed: {reason}")


class FilesystemCreateError(StorageError):
    """Creating a filesystem on one destination partition failed."""

    def __init__(self, partition: str, filesystem: str, reason: str):
        self.partition = partition
        self.filesystem = filesystem
        self.reason = reason
        super().__init__(f"Failed to create {filesystem} on {partition}: {reason}")


class IdentityRewriteError(StorageError):
    """Assigning a new UUID, label or partition name failed."""

    def __init__(self, partition: str, action: str, reason: str):
        self.partition = partition
        self.action = action
        self.reason = reason
        super().__init__(f"Failed to {action} on {partition}: {reason}")
