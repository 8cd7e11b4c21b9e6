"""Tests for storage exception classes."""

import pytest

from gpt_replicator.storage.exceptions import (
    BackendCommandError,
    DeviceBusyError,
    DeviceError,
    DeviceUnreadableError,
    FilesystemCreateError,
    IdentityRewriteError,
    InsufficientSpaceError,
    RescanFailedError,
    SourceDestinationSameError,
    StorageError,
    TableWriteConflictError,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    def test_storage_error_is_base_exception(self):
        """Test that StorageError is base exception."""
        error = StorageError("test error")
        assert isinstance(error, Exception)
        assert str(error) == "test error"

    @pytest.mark.parametrize(
        "error",
        [
            DeviceUnreadableError("/dev/sda", "gone"),
            DeviceBusyError("/dev/sda"),
            SourceDestinationSameError("/dev/sda", "/dev/sda"),
        ],
    )
    def test_device_errors(self, error):
        """Test device errors share the DeviceError base."""
        assert isinstance(error, DeviceError)
        assert isinstance(error, StorageError)

    @pytest.mark.parametrize(
        "error",
        [
            BackendCommandError(["sgdisk"]),
            InsufficientSpaceError("/dev/sdb", 100, 200),
            TableWriteConflictError("/dev/sdb", "write", "overlap"),
            RescanFailedError("/dev/sdb", "busy"),
            FilesystemCreateError("/dev/sdb1", "ext4", "mkfs failed"),
            IdentityRewriteError("/dev/sdb1", "set label", "too long"),
        ],
    )
    def test_storage_errors(self, error):
        assert isinstance(error, StorageError)
        assert not isinstance(error, DeviceError)


class TestBackendCommandError:
    """Test BackendCommandError messages."""

    def test_failed_command_message(self):
        error = BackendCommandError(
            ["sgdisk", "--new=1:2048:4095", "/dev/sdb"],
            returncode=4,
            stderr="Could not create partition 1\nfrom 2048 to 4095",
            stdout="Setting name!",
        )

        assert str(error) == (
            "Command failed (sgdisk --new=1:2048:4095 /dev/sdb) rc=4: "
            "stderr: Could not create partition 1 from 2048 to 4095 | stdout: Setting name!"
        )
        assert error.command == ["sgdisk", "--new=1:2048:4095", "/dev/sdb"]

    def test_unrunnable_command_message(self):
        error = BackendCommandError(["mkfs.vfat", "/dev/sdb1"], stderr="No such file")

        assert str(error) == "Command not runnable (mkfs.vfat /dev/sdb1): stderr: No such file"
        assert error.returncode is None


class TestMessages:
    """Test exception attributes and messages."""

    def test_insufficient_space(self):
        error = InsufficientSpaceError("/dev/sdb", 8000000, 8396834)

        assert error.destination_sectors == 8000000
        assert error.required_sectors == 8396834
        assert "too small" in str(error)

    def test_table_write_conflict(self):
        error = TableWriteConflictError("/dev/sdb", "verify", "partitions [2] differ")

        assert error.step == "verify"
        assert str(error) == "Partition table verify failed on /dev/sdb: partitions [2] differ"

    def test_identity_rewrite(self):
        error = IdentityRewriteError("/dev/sdb1", "set FAT32 label", "label too long")

        assert str(error) == "Failed to set FAT32 label on /dev/sdb1: label too long"

    def test_device_busy_without_reason(self):
        assert str(DeviceBusyError("/dev/sdb")) == "Device /dev/sdb is busy"

    def test_same_device(self):
        error = SourceDestinationSameError("/dev/sda", "/dev/sda1")

        assert error.source == "/dev/sda"
        assert error.destination == "/dev/sda1"
