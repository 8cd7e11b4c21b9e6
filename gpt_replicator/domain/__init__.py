"""Domain models for GPT layout replication."""

from __future__ import annotations

from .models import (
    BlockDevice,
    ExpansionPolicy,
    ExpansionSkipped,
    FilesystemFamily,
    FilesystemInfo,
    FilesystemMapping,
    LayoutPlan,
    OutcomeStatus,
    PartitionEntry,
    PartitionOutcome,
    PlannedPartition,
    SourceFilesystem,
    TargetPolicy,
    filesystem_family,
)


__all__ = [
    "BlockDevice",
    "ExpansionPolicy",
    "ExpansionSkipped",
    "FilesystemFamily",
    "FilesystemInfo",
    "FilesystemMapping",
    "LayoutPlan",
    "OutcomeStatus",
    "PartitionEntry",
    "PartitionOutcome",
    "PlannedPartition",
    "SourceFilesystem",
    "TargetPolicy",
    "filesystem_family",
]
