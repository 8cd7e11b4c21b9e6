"""Sequence a full replication run from source disk to destination disk.

Phases (strictly sequential, each a barrier for the next):

    1. Inspect source and destination, validate, plan the destination layout
    2. Zap the destination and write the planned table (fatal on failure)
    3. Flush and rescan; wait for every partition node (fatal on failure)
    4. Recreate filesystems per partition (failures recorded), flush
    5. Rewrite identities per partition (failures recorded)
    6. Final rescan (warning on failure) and re-read for the summary
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from gpt_replicator.config.settings import ReplicationConfig
from gpt_replicator.domain import BlockDevice, LayoutPlan, OutcomeStatus, PartitionOutcome
from gpt_replicator.logging import operation_context
from gpt_replicator.storage.backends import (
    LinuxFilesystemBackend,
    SgdiskBackend,
    UdevRescanBackend,
)
from gpt_replicator.storage.devices import human_size, sectors_to_bytes
from gpt_replicator.storage.exceptions import RescanFailedError
from gpt_replicator.storage.validation import validate_replication

from .filesystems import build_filesystem_mapping, replicate_filesystems
from .identity import rewrite_identities
from .inspector import read_layout
from .planner import plan_layout
from .table_writer import TableWriteResult, apply_plan, zap_table


@dataclass
class ReplicationSummary:
    source: BlockDevice
    destination: BlockDevice
    plan: LayoutPlan
    expand_percent: int
    final_layout: Optional[BlockDevice] = None
    table_result: Optional[TableWriteResult] = None
    filesystem_outcomes: list[PartitionOutcome] = field(default_factory=list)
    identity_outcomes: list[PartitionOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failures(self) -> list[PartitionOutcome]:
        return [
            outcome
            for outcome in [*self.filesystem_outcomes, *self.identity_outcomes]
            if outcome.status is OutcomeStatus.FAILED
        ]

    def expansion_line(self) -> str:
        plan = self.plan
        if plan.expanded:
            entry = plan.get_entry(plan.expanded_number)
            size = human_size(sectors_to_bytes(plan.sectors_added))
            return (
                f"Partition {entry.number} ('{entry.name}') expanded by ~{size} "
                f"({self.expand_percent}% of unallocated space)"
            )
        reason = plan.skipped.value if plan.skipped else "not requested"
        return f"No partition expanded: {reason}"

    def format_lines(self) -> list[str]:
        layout = self.final_layout
        lines = [
            f"Source:      {self.source.path}",
            f"Destination: {self.destination.path} "
            f"({self.destination.total_sectors} sectors, "
            f"{human_size(sectors_to_bytes(self.destination.total_sectors))})",
            "",
        ]
        if self.dry_run:
            lines.append("Planned partition table (dry run, nothing written):")
            rows = [(entry.number, entry.start, entry.end, entry.size_sectors, entry.name)
                    for entry in self.plan.entries]
        else:
            lines.append("Final partition table:")
            partitions = layout.sorted_by_start() if layout else []
            rows = [(entry.number, entry.start, entry.end, entry.size_sectors, entry.name)
                    for entry in partitions]
        lines.append(f"{'Number':>6}  {'Start (sector)':>14}  {'End (sector)':>14}  {'Size':>10}  Name")
        for number, start, end, size, name in rows:
            lines.append(
                f"{number:>6}  {start:>14}  {end:>14}  "
                f"{human_size(sectors_to_bytes(size)):>10}  {name}"
            )
        lines.append("")
        lines.append(self.expansion_line())
        outcomes = [*self.filesystem_outcomes, *self.identity_outcomes]
        if outcomes:
            lines.append("")
            for outcome in outcomes:
                lines.append(
                    f"  {outcome.node} {outcome.step}: {outcome.status.value}"
                    + (f" ({outcome.detail})" if outcome.detail else "")
                )
        for warning in self.warnings:
            lines.append(f"Warning: {warning}")
        return lines


def replicate_disk(
    config: ReplicationConfig,
    *,
    table_backend=None,
    fs_backend=None,
    rescan_backend=None,
    check_mounts: bool = True,
    dry_run: bool = False,
) -> ReplicationSummary:
    """Clone the source layout onto the destination and recreate its filesystems.

    Raises:
        DeviceUnreadableError, SourceDestinationSameError, DeviceBusyError,
        InsufficientSpaceError: Before any mutation
        TableWriteConflictError, RescanFailedError: After the destination
            has been modified; it must be treated as unusable
    """
    table_backend = table_backend or SgdiskBackend()
    fs_backend = fs_backend or LinuxFilesystemBackend()
    rescan_backend = rescan_backend or UdevRescanBackend(config.settle_timeout_seconds)

    with operation_context(
        "replicate", source=config.source, destination=config.destination
    ) as log:
        source = read_layout(config.source, table_backend)
        destination = read_layout(
            config.destination, table_backend, strict=not config.zap_destination
        )
        validate_replication(
            source,
            destination,
            reserved_backup_sectors=config.reserved_backup_sectors,
            check_mounts=check_mounts,
        )
        plan = plan_layout(
            source,
            destination.total_sectors,
            config.reserved_backup_sectors,
            config.expansion_policy(),
        )
        summary = ReplicationSummary(
            source=source,
            destination=destination,
            plan=plan,
            expand_percent=config.expand_percent,
            dry_run=dry_run,
        )
        if dry_run:
            log.info("Dry run: leaving the destination untouched")
            return summary

        if config.zap_destination:
            zap_table(destination.path, table_backend)
        summary.table_result = apply_plan(destination.path, plan, table_backend)
        summary.warnings.extend(summary.table_result.warnings)

        rescan_backend.rescan(destination.path, plan.partition_numbers)
        written = read_layout(destination.path, table_backend)

        log.info("Replicating file systems...")
        mapping = build_filesystem_mapping(
            source, destination.path, written.partition_numbers, fs_backend
        )
        summary.filesystem_outcomes = replicate_filesystems(mapping, fs_backend)
        log.info("Flushing all writes before UUID adjustments...")
        rescan_backend.flush()

        log.info("Adjusting filesystem UUIDs...")
        summary.identity_outcomes = rewrite_identities(
            mapping, fs_backend, table_backend, rescan_backend
        )

        try:
            rescan_backend.rescan(destination.path, written.partition_numbers)
        except RescanFailedError as error:
            message = f"Could not reread partition table after UUID updates: {error}"
            log.warning(message)
            summary.warnings.append(message)
        summary.final_layout = read_layout(destination.path, table_backend)

        failures = summary.failures
        if failures:
            log.warning(f"{len(failures)} per-partition step(s) failed")
    return summary
