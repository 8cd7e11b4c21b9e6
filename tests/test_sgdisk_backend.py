"""
Tests for gpt_replicator.storage.backends.sgdisk.

This test suite covers:
- Parsing `sgdisk --print` and `sgdisk --info` output
- Building the single-invocation write command
- SgdiskBackend calls with mocked command execution
"""

from unittest.mock import patch

import pytest

from gpt_replicator.domain import PartitionEntry
from gpt_replicator.storage.backends.sgdisk import (
    SgdiskBackend,
    build_write_command,
    parse_sgdisk_info,
    parse_sgdisk_print,
)
from gpt_replicator.storage.exceptions import BackendCommandError


class TestParseSgdiskPrint:
    """Tests for parse_sgdisk_print()."""

    def test_parses_rows(self, sgdisk_print_output):
        """Test each partition row is parsed with its coordinates."""
        total, entries = parse_sgdisk_print(sgdisk_print_output)

        assert total == 8398848
        assert [(e.number, e.start, e.end) for e in entries] == [
            (1, 2048, 206847),
            (2, 206848, 8388607),
            (3, 8388608, 8396799),
        ]
        assert entries[0].type_code == "EF00"
        assert entries[0].name == "esp"

    def test_name_with_spaces(self, sgdisk_print_output):
        """Test a partition name containing spaces is kept whole."""
        _, entries = parse_sgdisk_print(sgdisk_print_output)

        assert entries[2].name == "recovery data"

    def test_empty_table(self, sgdisk_empty_print_output):
        """Test a zapped disk parses to no entries."""
        total, entries = parse_sgdisk_print(sgdisk_empty_print_output)

        assert total == 16777216
        assert entries == []

    def test_missing_header_raises(self):
        """Test output without a partition listing is rejected."""
        with pytest.raises(ValueError, match="no partition listing"):
            parse_sgdisk_print("Problem opening /dev/sdz for reading!\n")

    def test_garbled_row_raises(self, sgdisk_print_output):
        """Test an unparseable row after the header is rejected."""
        with pytest.raises(ValueError, match="Unrecognized"):
            parse_sgdisk_print(sgdisk_print_output + "   4   garbage\n")


class TestParseSgdiskInfo:
    """Tests for parse_sgdisk_info()."""

    def test_parses_type_guid_and_name(self, sgdisk_info_output):
        type_guid, name = parse_sgdisk_info(sgdisk_info_output)

        assert type_guid == "0FC63DAF-8483-4772-8E79-3D69D8477DE4"
        assert name == "APP"

    def test_empty_name(self):
        _, name = parse_sgdisk_info("Partition name: ''\n")

        assert name == ""

    def test_missing_fields(self):
        assert parse_sgdisk_info("Partition #9 does not exist.\n") == (None, None)


class TestBuildWriteCommand:
    """Tests for build_write_command()."""

    def test_deletions_precede_creations(self):
        """Test every --delete comes before any --new."""
        creations = [
            PartitionEntry(3, 15930952, 15939143, "8300", "recovery"),
            PartitionEntry(2, 206848, 15930951, "8300", "APP"),
        ]

        command = build_write_command("nvme0n1", [3, 2], creations)

        assert command == [
            "sgdisk",
            "--set-alignment=1",
            "--delete=2",
            "--delete=3",
            "--new=2:206848:15930951",
            "--typecode=2:8300",
            "--change-name=2:APP",
            "--new=3:15930952:15939143",
            "--typecode=3:8300",
            "--change-name=3:recovery",
            "/dev/nvme0n1",
        ]

    def test_unnamed_entry_has_no_name_option(self):
        command = build_write_command("/dev/sda", [], [PartitionEntry(1, 2048, 4095, "EF00")])

        assert not any(arg.startswith("--change-name") for arg in command)


class TestSgdiskBackend:
    """Tests for SgdiskBackend with mocked commands."""

    def test_total_sectors(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked", return_value="16777216\n") as run:
            assert SgdiskBackend().total_sectors("nvme0n1") == 16777216

        run.assert_called_once_with(["blockdev", "--getsz", "/dev/nvme0n1"])

    def test_total_sectors_garbage_raises(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked", return_value="oops"):
            with pytest.raises(ValueError):
                SgdiskBackend().total_sectors("/dev/sda")

    def test_read_table_uses_full_type_guid(self, sgdisk_print_output):
        """Test --info output replaces the short type code and printed name."""
        def fake_run(command):
            if command[1] == "--print":
                return sgdisk_print_output
            number = command[1].split("=")[1]
            return (
                f"Partition GUID code: 0FC63DAF-8483-4772-8E79-3D69D8477DE4 (Linux filesystem)\n"
                f"Partition name: 'part{number}'\n"
            )

        with patch("gpt_replicator.storage.backends.sgdisk.run_checked", side_effect=fake_run):
            entries = SgdiskBackend().read_table("/dev/mmcblk0")

        assert [entry.name for entry in entries] == ["part1", "part2", "part3"]
        assert all(entry.type_code == "0FC63DAF-8483-4772-8E79-3D69D8477DE4" for entry in entries)

    def test_read_table_propagates_command_error(self):
        error = BackendCommandError(["sgdisk", "--print", "/dev/sdz"], returncode=2)
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked", side_effect=error):
            with pytest.raises(BackendCommandError):
                SgdiskBackend().read_table("/dev/sdz")

    def test_zap_runs_zap_all_then_clear(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked") as run:
            SgdiskBackend().zap("/dev/sdb")

        assert [call.args[0] for call in run.call_args_list] == [
            ["sgdisk", "--zap-all", "/dev/sdb"],
            ["sgdisk", "--clear", "/dev/sdb"],
        ]

    def test_randomize_and_relocate(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked") as run:
            backend = SgdiskBackend()
            backend.randomize_guids("/dev/sdb")
            backend.relocate_backup("/dev/sdb")

        assert [call.args[0] for call in run.call_args_list] == [
            ["sgdisk", "--randomize-guids", "/dev/sdb"],
            ["sgdisk", "--move-second-header", "/dev/sdb"],
        ]

    def test_rename_partition(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked") as run:
            SgdiskBackend().rename_partition("/dev/sdb", 1, "esp")

        run.assert_called_once_with(["sgdisk", "--change-name=1:esp", "/dev/sdb"])

    def test_write_entries_is_one_invocation(self):
        with patch("gpt_replicator.storage.backends.sgdisk.run_checked") as run:
            SgdiskBackend().write_entries(
                "/dev/sdb",
                [1],
                [PartitionEntry(1, 2048, 99999, "8300", "APP")],
            )

        run.assert_called_once()
        assert "--delete=1" in run.call_args.args[0]
