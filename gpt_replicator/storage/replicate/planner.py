"""Compute the destination partition map from a source layout.

The planner is pure: it never touches a device. Given the source snapshot and
the destination size it returns a LayoutPlan that is either

    - a verbatim copy of the source map (too little free space, no target,
      ambiguous target, empty source), with ``plan.skipped`` saying why, or
    - the source map with one target partition grown by
      ``floor(unallocated * expand_percent / 100)`` sectors and every
      partition starting after the target shifted by the same amount.

Sector Arithmetic:
    unallocated  = destination_total - last_used_source_sector - reserved
    max_end      = destination_total - reserved - 1
    sectors_add  = min(unallocated * expand_percent // 100, max_end - last_used)

    The cap only bites at expand_percent=100 and keeps the shifted tail at
    or before max_end.

Target Selection (TargetPolicy):
    APP_THEN_LAST     name tag match, else largest end sector
    APP_THEN_BIGGEST  name tag match, else largest size
    APP_ONLY          name tag match only
    LAST / BIGGEST    positional heuristic only

    More than one tag match, or a tie on the heuristic, is ambiguous and
    yields a verbatim plan.
"""

from __future__ import annotations

from typing import Optional, Sequence

from gpt_replicator.domain import (
    BlockDevice,
    ExpansionPolicy,
    ExpansionSkipped,
    LayoutPlan,
    PartitionEntry,
    PlannedPartition,
)
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import human_size, sectors_to_bytes
from gpt_replicator.storage.exceptions import InsufficientSpaceError

log = LoggerFactory.for_planner()


def select_target_partition(
    partitions: Sequence[PartitionEntry],
    policy: ExpansionPolicy,
) -> tuple[Optional[PartitionEntry], Optional[ExpansionSkipped]]:
    """Pick the partition that absorbs the new space.

    Returns:
        (target, None) on success, or (None, reason) when nothing can be
        picked unambiguously
    """
    if not partitions:
        return None, ExpansionSkipped.EMPTY_SOURCE

    target_policy = policy.target_policy
    if target_policy.matches_tag:
        tag = policy.target_tag.strip().lower()
        matches = [entry for entry in partitions if entry.name.strip().lower() == tag]
        if len(matches) == 1:
            return matches[0], None
        if len(matches) > 1:
            log.warning(
                f"{len(matches)} partitions are named {policy.target_tag!r}; "
                "not expanding any of them"
            )
            return None, ExpansionSkipped.AMBIGUOUS_TARGET

    heuristic = target_policy.fallback
    if heuristic is None:
        return None, ExpansionSkipped.NO_TARGET

    if heuristic == "last":
        def key(entry):
            return entry.end
    else:
        def key(entry):
            return entry.size_sectors

    best = max(key(entry) for entry in partitions)
    candidates = [entry for entry in partitions if key(entry) == best]
    if len(candidates) != 1:
        return None, ExpansionSkipped.AMBIGUOUS_TARGET
    return candidates[0], None


def validate_plan(plan: LayoutPlan) -> None:
    """Check the structural invariants of a plan.

    Raises:
        ValueError: On duplicate numbers, inverted or out-of-range entries,
            or overlapping entries
    """
    numbers = [entry.number for entry in plan.entries]
    if len(numbers) != len(set(numbers)):
        raise ValueError(f"duplicate partition numbers in plan: {numbers}")
    ordered = sorted(plan.entries, key=lambda entry: entry.start)
    for index, entry in enumerate(ordered):
        if entry.start < 0 or entry.end < entry.start:
            raise ValueError(f"partition {entry.number} has invalid bounds")
        if entry.end > plan.max_end_sector:
            raise ValueError(
                f"partition {entry.number} ends at {entry.end}, "
                f"past the last usable sector {plan.max_end_sector}"
            )
        if index and ordered[index - 1].end >= entry.start:
            raise ValueError(
                f"partitions {ordered[index - 1].number} and {entry.number} overlap"
            )


def _verbatim(entries: Sequence[PartitionEntry]) -> tuple[PlannedPartition, ...]:
    return tuple(
        PlannedPartition(
            number=entry.number,
            start=entry.start,
            end=entry.end,
            type_code=entry.type_code,
            name=entry.name,
            source_start=entry.start,
            source_end=entry.end,
        )
        for entry in entries
    )


def plan_layout(
    source: BlockDevice,
    destination_total_sectors: int,
    reserved_backup_sectors: int = 34,
    policy: Optional[ExpansionPolicy] = None,
) -> LayoutPlan:
    """Compute the destination partition map.

    Raises:
        ValueError: If a tunable is out of range
        InsufficientSpaceError: If the source layout does not fit on the
            destination even without expansion
    """
    policy = policy or ExpansionPolicy()
    if reserved_backup_sectors < 0:
        raise ValueError("reserved_backup_sectors must not be negative")
    if not 0 <= policy.expand_percent <= 100:
        raise ValueError("expand_percent must be between 0 and 100")
    if policy.threshold_sectors < 0:
        raise ValueError("threshold_sectors must not be negative")

    ordered = source.sorted_by_start()
    last_used = source.last_used_sector
    max_end = destination_total_sectors - reserved_backup_sectors - 1
    if ordered and last_used > max_end:
        raise InsufficientSpaceError(
            "destination",
            destination_total_sectors,
            last_used + 1 + reserved_backup_sectors,
        )
    unallocated = destination_total_sectors - last_used - reserved_backup_sectors
    log.debug(
        f"Destination {destination_total_sectors} sectors, source last used sector "
        f"{last_used}, unallocated {unallocated} sectors"
    )

    def verbatim(reason: ExpansionSkipped) -> LayoutPlan:
        log.info(f"Planning verbatim copy of {len(ordered)} partitions: {reason.value}")
        return LayoutPlan(
            entries=_verbatim(ordered),
            total_sectors=destination_total_sectors,
            reserved_backup_sectors=reserved_backup_sectors,
            unallocated_sectors=unallocated,
            skipped=reason,
        )

    if not ordered:
        return verbatim(ExpansionSkipped.EMPTY_SOURCE)
    if unallocated < policy.threshold_sectors:
        return verbatim(ExpansionSkipped.BELOW_THRESHOLD)

    target, reason = select_target_partition(ordered, policy)
    if target is None:
        return verbatim(reason or ExpansionSkipped.NO_TARGET)

    sectors_to_add = min(unallocated * policy.expand_percent // 100, max_end - last_used)
    if sectors_to_add <= 0:
        return verbatim(ExpansionSkipped.BELOW_THRESHOLD)

    entries = []
    for entry in ordered:
        start, end = entry.start, entry.end
        if entry.number == target.number:
            end = min(entry.end + sectors_to_add, max_end)
        elif entry.start > target.start:
            start += sectors_to_add
            end += sectors_to_add
        entries.append(
            PlannedPartition(
                number=entry.number,
                start=start,
                end=end,
                type_code=entry.type_code,
                name=entry.name,
                source_start=entry.start,
                source_end=entry.end,
            )
        )

    planned_target = next(entry for entry in entries if entry.number == target.number)
    plan = LayoutPlan(
        entries=tuple(entries),
        total_sectors=destination_total_sectors,
        reserved_backup_sectors=reserved_backup_sectors,
        unallocated_sectors=unallocated,
        expanded_number=target.number,
        sectors_added=planned_target.end - target.end,
    )
    validate_plan(plan)

    shifted = [entry.number for entry in entries if entry.moved]
    log.info(
        f"Expanding partition {target.number} ({target.name!r}) by "
        f"{plan.sectors_added} sectors (~{human_size(sectors_to_bytes(plan.sectors_added))}, "
        f"{policy.expand_percent}% of unallocated space)"
    )
    if shifted:
        log.info(
            f"Shifting partitions {', '.join(str(number) for number in shifted)} "
            f"by {sectors_to_add} sectors"
        )
    return plan
