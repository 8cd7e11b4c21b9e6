"""GPT partition-table backend built on sgdisk and blockdev.

Reads are parsed from ``sgdisk --print`` (one row per partition) and
``sgdisk --info=N`` (full type GUID and exact partition name). Writes are
always submitted as a single sgdisk invocation: sgdisk applies every option
to its in-memory copy of the table and writes the result once, so deleting
and recreating entries in one call never exposes overlapping entries on disk.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from gpt_replicator.domain import PartitionEntry
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import resolve_device_node, run_checked

log = LoggerFactory.for_table()

_DISK_LINE = re.compile(r"^Disk\s+(\S+):\s+(\d+)\s+sectors")
_TABLE_HEADER = re.compile(r"^Number\s+Start")
_TABLE_ROW = re.compile(
    r"^\s*(\d+)\s+(\d+)\s+(\d+)\s+(\S+\s+\S+)\s+([0-9A-Fa-f]{4})(?:\s+(.*))?$"
)
_TYPE_GUID = re.compile(r"^Partition GUID code:\s+([0-9A-Fa-f-]{36})")
_PARTITION_NAME = re.compile(r"^Partition name:\s+'(.*)'\s*$")


def parse_sgdisk_print(output: str) -> tuple[Optional[int], list[PartitionEntry]]:
    """Parse ``sgdisk --print`` output into (total sectors, entries).

    Entries carry the short type code; names are as printed.

    Raises:
        ValueError: If the partition listing header is missing or a row
            after the header cannot be parsed
    """
    total_sectors = None
    entries: list[PartitionEntry] = []
    in_table = False
    for line in output.splitlines():
        if not line.strip():
            continue
        if not in_table:
            disk_match = _DISK_LINE.match(line.strip())
            if disk_match:
                total_sectors = int(disk_match.group(2))
            if _TABLE_HEADER.match(line.strip()):
                in_table = True
            continue
        row = _TABLE_ROW.match(line)
        if not row:
            raise ValueError(f"Unrecognized sgdisk partition row: {line.strip()!r}")
        log.trace(f"Parsed sgdisk row: {line.strip()}")
        entries.append(
            PartitionEntry(
                number=int(row.group(1)),
                start=int(row.group(2)),
                end=int(row.group(3)),
                type_code=row.group(5).upper(),
                name=(row.group(6) or "").strip(),
            )
        )
    if not in_table:
        raise ValueError("sgdisk output has no partition listing")
    return total_sectors, entries


def parse_sgdisk_info(output: str) -> tuple[Optional[str], Optional[str]]:
    """Parse ``sgdisk --info=N`` output into (type GUID, partition name)."""
    type_guid = None
    name = None
    for line in output.splitlines():
        stripped = line.strip()
        guid_match = _TYPE_GUID.match(stripped)
        if guid_match:
            type_guid = guid_match.group(1).upper()
            continue
        name_match = _PARTITION_NAME.match(stripped)
        if name_match:
            name = name_match.group(1)
    return type_guid, name


def build_write_command(
    device: str,
    deletions: Iterable[int],
    creations: Iterable[PartitionEntry],
) -> list[str]:
    """Build one sgdisk invocation deleting then creating entries.

    Alignment is set to 1 so entries land on exactly the planned sectors.
    """
    command = ["sgdisk", "--set-alignment=1"]
    for number in sorted(set(deletions)):
        command.append(f"--delete={number}")
    for entry in sorted(creations, key=lambda item: item.start):
        command.append(f"--new={entry.number}:{entry.start}:{entry.end}")
        command.append(f"--typecode={entry.number}:{entry.type_code}")
        if entry.name:
            command.append(f"--change-name={entry.number}:{entry.name}")
    command.append(resolve_device_node(device))
    return command


class SgdiskBackend:
    """Partition-table backend for GUID partition tables."""

    def total_sectors(self, device: str) -> int:
        """Return the size of ``device`` in 512-byte sectors."""
        output = run_checked(["blockdev", "--getsz", resolve_device_node(device)])
        try:
            return int(output.strip())
        except ValueError as error:
            raise ValueError(f"blockdev returned {output.strip()!r}") from error

    def read_table(self, device: str) -> list[PartitionEntry]:
        """Return the partition entries of ``device`` sorted by start sector."""
        node = resolve_device_node(device)
        _, rows = parse_sgdisk_print(run_checked(["sgdisk", "--print", node]))
        entries = []
        for row in rows:
            type_guid, name = parse_sgdisk_info(
                run_checked(["sgdisk", f"--info={row.number}", node])
            )
            entries.append(
                PartitionEntry(
                    number=row.number,
                    start=row.start,
                    end=row.end,
                    type_code=type_guid or row.type_code,
                    name=row.name if name is None else name,
                )
            )
        return sorted(entries, key=lambda entry: entry.start)

    def zap(self, device: str) -> None:
        """Destroy both GPT copies and the protective MBR, then write an empty GPT."""
        node = resolve_device_node(device)
        log.info(f"Clearing all partition metadata from {node}")
        run_checked(["sgdisk", "--zap-all", node])
        run_checked(["sgdisk", "--clear", node])

    def write_entries(
        self,
        device: str,
        deletions: Iterable[int],
        creations: Iterable[PartitionEntry],
    ) -> None:
        run_checked(build_write_command(device, deletions, creations))

    def randomize_guids(self, device: str) -> None:
        """Give the disk and every partition a fresh unique GUID."""
        run_checked(["sgdisk", "--randomize-guids", resolve_device_node(device)])

    def relocate_backup(self, device: str) -> None:
        """Move the backup GPT header and table to the true end of the disk."""
        run_checked(["sgdisk", "--move-second-header", resolve_device_node(device)])

    def rename_partition(self, device: str, number: int, name: str) -> None:
        run_checked(
            ["sgdisk", f"--change-name={number}:{name}", resolve_device_node(device)]
        )
