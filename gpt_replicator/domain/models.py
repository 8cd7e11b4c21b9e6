"""Domain model for GPT layout replication.

Type-safe value objects passed explicitly between the replication components:
the inspector produces BlockDevice snapshots, the planner turns them into a
LayoutPlan, the filesystem replicator consumes a FilesystemMapping and every
per-partition step reports a PartitionOutcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ==============================================================================
# Partition Table Domain
# ==============================================================================


@dataclass(frozen=True)
class PartitionEntry:
    """One entry of a GUID partition table.

    Sector numbers are inclusive: a partition covering sectors 2048..4095 has
    start=2048, end=4095 and size_sectors=2048.
    """

    number: int  # Stable across resizes, never renumbered
    start: int
    end: int
    type_code: str  # Partition type GUID (or sgdisk short code such as 8300)
    name: str = ""  # GPT partition name (PARTLABEL)

    @property
    def size_sectors(self) -> int:
        return self.end - self.start + 1

    def overlaps(self, other: PartitionEntry) -> bool:
        return self.start <= other.end and other.start <= self.end


@dataclass(frozen=True)
class BlockDevice:
    """Snapshot of a block device and its partition map."""

    path: str  # e.g., "/dev/nvme0n1"
    total_sectors: int
    partitions: tuple[PartitionEntry, ...] = ()

    @property
    def last_used_sector(self) -> int:
        """Largest end sector across all partitions (0 for an empty table)."""
        return max((entry.end for entry in self.partitions), default=0)

    @property
    def partition_numbers(self) -> list[int]:
        return sorted(entry.number for entry in self.partitions)

    def get_partition(self, number: int) -> Optional[PartitionEntry]:
        for entry in self.partitions:
            if entry.number == number:
                return entry
        return None

    def sorted_by_start(self) -> list[PartitionEntry]:
        return sorted(self.partitions, key=lambda entry: entry.start)


# ==============================================================================
# Layout Planning Domain
# ==============================================================================


class TargetPolicy(Enum):
    """How the planner picks the partition that absorbs new free space.

    The APP_* policies try a name-tag match first and fall back to the
    positional heuristic; ties on either step leave the layout unexpanded.
    """

    APP_THEN_LAST = "app_then_last"
    APP_THEN_BIGGEST = "app_then_biggest"
    APP_ONLY = "app_only"
    LAST = "last"
    BIGGEST = "biggest"

    @property
    def matches_tag(self) -> bool:
        return self in (
            TargetPolicy.APP_THEN_LAST,
            TargetPolicy.APP_THEN_BIGGEST,
            TargetPolicy.APP_ONLY,
        )

    @property
    def fallback(self) -> Optional[str]:
        """Positional heuristic used when no tag matches ("last"/"biggest")."""
        if self in (TargetPolicy.APP_THEN_LAST, TargetPolicy.LAST):
            return "last"
        if self in (TargetPolicy.APP_THEN_BIGGEST, TargetPolicy.BIGGEST):
            return "biggest"
        return None


class ExpansionSkipped(Enum):
    """Why a plan is a verbatim copy. Not an error."""

    EMPTY_SOURCE = "source partition table is empty"
    BELOW_THRESHOLD = "unallocated space is below the expansion threshold"
    NO_TARGET = "no partition matches the target policy"
    AMBIGUOUS_TARGET = "target partition is ambiguous"


@dataclass(frozen=True)
class ExpansionPolicy:
    """Tunables of the layout planner."""

    threshold_sectors: int = 1_000_000  # ~488 MiB
    expand_percent: int = 90  # remaining 10% stays unallocated as headroom
    target_policy: TargetPolicy = TargetPolicy.APP_THEN_LAST
    target_tag: str = "APP"


@dataclass(frozen=True)
class PlannedPartition:
    """A destination table entry together with the source coordinates it came from."""

    number: int
    start: int
    end: int
    type_code: str
    name: str
    source_start: int
    source_end: int

    @property
    def size_sectors(self) -> int:
        return self.end - self.start + 1

    @property
    def moved(self) -> bool:
        return self.start != self.source_start

    @property
    def grown_by(self) -> int:
        return (self.end - self.start) - (self.source_end - self.source_start)

    def to_entry(self) -> PartitionEntry:
        return PartitionEntry(
            number=self.number,
            start=self.start,
            end=self.end,
            type_code=self.type_code,
            name=self.name,
        )


@dataclass(frozen=True)
class LayoutPlan:
    """The destination partition table to be written, ordered by start sector."""

    entries: tuple[PlannedPartition, ...]
    total_sectors: int
    reserved_backup_sectors: int
    unallocated_sectors: int
    expanded_number: Optional[int] = None
    sectors_added: int = 0
    skipped: Optional[ExpansionSkipped] = None

    @property
    def expanded(self) -> bool:
        return self.expanded_number is not None and self.sectors_added > 0

    @property
    def max_end_sector(self) -> int:
        return self.total_sectors - self.reserved_backup_sectors - 1

    @property
    def partition_numbers(self) -> list[int]:
        return sorted(entry.number for entry in self.entries)

    def get_entry(self, number: int) -> Optional[PlannedPartition]:
        for entry in self.entries:
            if entry.number == number:
                return entry
        return None

    def to_entries(self) -> list[PartitionEntry]:
        return [entry.to_entry() for entry in self.entries]


# ==============================================================================
# Filesystem Domain
# ==============================================================================


class FilesystemFamily(Enum):
    """Filesystem created on a destination partition."""

    EXT4 = "ext4"
    FAT32 = "vfat"
    SWAP = "swap"

    @property
    def display_name(self) -> str:
        return {"ext4": "ext4", "vfat": "FAT32", "swap": "swap"}[self.value]


_FAMILY_BY_FSTYPE = {
    "ext2": FilesystemFamily.EXT4,
    "ext3": FilesystemFamily.EXT4,
    "ext4": FilesystemFamily.EXT4,
    "vfat": FilesystemFamily.FAT32,
    "fat32": FilesystemFamily.FAT32,
    "swap": FilesystemFamily.SWAP,
}


def filesystem_family(fstype: Optional[str]) -> Optional[FilesystemFamily]:
    """Normalize a detected filesystem type to the family that gets replicated.

    Returns None for anything that is left raw.
    """
    if not fstype:
        return None
    return _FAMILY_BY_FSTYPE.get(fstype.strip().lower())


@dataclass(frozen=True)
class FilesystemInfo:
    """What blkid reports for one partition."""

    fstype: Optional[str] = None
    label: Optional[str] = None
    uuid: Optional[str] = None
    partition_name: Optional[str] = None  # PARTLABEL


@dataclass(frozen=True)
class SourceFilesystem:
    """The source side of one destination partition."""

    source_node: str
    fstype: Optional[str]
    label: Optional[str]
    partition_name: Optional[str]

    @property
    def family(self) -> Optional[FilesystemFamily]:
        return filesystem_family(self.fstype)


@dataclass(frozen=True)
class FilesystemMapping:
    """Destination partition number -> source filesystem details."""

    source: str
    destination: str
    partitions: dict[int, SourceFilesystem] = field(default_factory=dict)

    @property
    def numbers(self) -> list[int]:
        return sorted(self.partitions)

    def get(self, number: int) -> Optional[SourceFilesystem]:
        return self.partitions.get(number)


# ==============================================================================
# Outcome Domain
# ==============================================================================


class OutcomeStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


@dataclass(frozen=True)
class PartitionOutcome:
    """Result of one per-partition step (filesystem creation or identity rewrite)."""

    number: int
    node: str
    step: str  # "filesystem" or "identity"
    status: OutcomeStatus
    detail: str = ""
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED
