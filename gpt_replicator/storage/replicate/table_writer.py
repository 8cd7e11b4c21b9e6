"""Apply a LayoutPlan to the destination partition table.

Mutation Ordering:
    The current destination table is re-read and diffed against the plan.
    Entries that already match are left alone; entries that differ and
    entries absent from the plan are deleted, and the differing entries are
    created at their planned coordinates. Deletions and creations go to the
    backend as one atomic table update with every deletion ordered first, so
    an old and a new coordinate range are never visible at the same time.

    The backup GPT is moved to the true end of the device before that
    update too. A table copied from a smaller disk still ends its usable
    area at the old size, and sgdisk refuses entries beyond it.

After a write:
    1. The backup GPT is relocated to the true end of the device again.
       Failure is only a warning because the primary table stays valid.
    2. Partition GUIDs are randomized (the table came from the source disk).
    3. The table is re-read and every entry (coordinates, type and name) is
       compared with the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from gpt_replicator.domain import LayoutPlan, PartitionEntry
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import resolve_device_node
from gpt_replicator.storage.exceptions import (
    BackendCommandError,
    DeviceUnreadableError,
    TableWriteConflictError,
)

from .planner import validate_plan

log = LoggerFactory.for_table()


@dataclass(frozen=True)
class TableWriteResult:
    deleted: tuple[int, ...] = ()
    created: tuple[int, ...] = ()
    backup_relocated: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return bool(self.deleted or self.created)


def diff_table(
    current: list[PartitionEntry],
    planned: list[PartitionEntry],
) -> tuple[list[int], list[PartitionEntry]]:
    """Return (numbers to delete, entries to create) to turn current into planned."""
    current_by_number = {entry.number: entry for entry in current}
    planned_numbers = {entry.number for entry in planned}
    creations = [entry for entry in planned if current_by_number.get(entry.number) != entry]
    creation_numbers = {entry.number for entry in creations}
    deletions = sorted(
        number
        for number in current_by_number
        if number not in planned_numbers or number in creation_numbers
    )
    return deletions, creations


def _read_table(node: str, table_backend) -> list[PartitionEntry]:
    try:
        return list(table_backend.read_table(node))
    except (BackendCommandError, ValueError) as error:
        raise DeviceUnreadableError(node, str(error)) from error


def _move_backup(node: str, table_backend) -> str | None:
    """Move the backup GPT to the end of the device; return a warning on failure."""
    try:
        table_backend.relocate_backup(node)
    except BackendCommandError as error:
        message = f"Could not move backup GPT header to the end of {node}: {error}"
        log.warning(message)
        return message
    return None


def zap_table(device: str, table_backend) -> None:
    """Destroy all partition metadata on ``device``.

    Raises:
        TableWriteConflictError: If the backend fails; fatal to the run
    """
    node = resolve_device_node(device)
    try:
        table_backend.zap(node)
    except BackendCommandError as error:
        raise TableWriteConflictError(node, "zap", str(error)) from error


def apply_plan(device: str, plan: LayoutPlan, table_backend) -> TableWriteResult:
    """Write ``plan`` to ``device``, touching only entries that differ.

    Raises:
        TableWriteConflictError: If the plan is invalid, the backend rejects
            an entry, GUID randomization fails or the re-read table does not
            match the plan
        DeviceUnreadableError: If the destination table cannot be re-read
    """
    node = resolve_device_node(device)
    try:
        validate_plan(plan)
    except ValueError as error:
        raise TableWriteConflictError(node, "validate", str(error)) from error

    current = _read_table(node, table_backend)
    deletions, creations = diff_table(current, plan.to_entries())
    warnings: list[str] = []

    relocation_error = _move_backup(node, table_backend)

    if not deletions and not creations:
        log.info(f"Partition table on {node} already matches the plan")
    else:
        log.info(
            f"Writing partition table on {node}: "
            f"delete {deletions or 'none'}, create {[entry.number for entry in creations] or 'none'}"
        )
        try:
            table_backend.write_entries(node, deletions, creations)
        except BackendCommandError as error:
            raise TableWriteConflictError(node, "write", str(error)) from error
        relocation_error = _move_backup(node, table_backend)
        try:
            table_backend.randomize_guids(node)
        except BackendCommandError as error:
            raise TableWriteConflictError(node, "randomize-guids", str(error)) from error

    if relocation_error:
        warnings.append(relocation_error)

    written = {entry.number: entry for entry in _read_table(node, table_backend)}
    expected = {entry.number: entry for entry in plan.to_entries()}
    if written != expected:
        mismatched = sorted(
            number
            for number in set(written) | set(expected)
            if written.get(number) != expected.get(number)
        )
        raise TableWriteConflictError(
            node, "verify", f"partitions {mismatched} do not match the plan after writing"
        )

    return TableWriteResult(
        deleted=tuple(deletions),
        created=tuple(entry.number for entry in creations),
        backup_relocated=relocation_error is None,
        warnings=warnings,
    )
