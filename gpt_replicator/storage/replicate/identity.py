"""Give destination filesystems identities that do not collide with the source.

Actions per detected destination filesystem:

    ext4:   e2fsck -f, new random UUID, source label copied when present
    swap:   signature rewritten with a fresh UUID4 (source label kept)
    FAT32:  source volume label copied (regenerates the volume serial) and the
            source GPT partition name copied onto the destination entry,
            followed by a partition table reload
    other:  reported as unsupported

Every partition is flushed before the next one is processed. Failures are
recorded per partition and never stop the loop.
"""

from __future__ import annotations

import uuid

from gpt_replicator.domain import (
    FilesystemFamily,
    FilesystemMapping,
    OutcomeStatus,
    PartitionOutcome,
    SourceFilesystem,
    filesystem_family,
)
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import partition_node
from gpt_replicator.storage.exceptions import (
    BackendCommandError,
    IdentityRewriteError,
    RescanFailedError,
)

log = LoggerFactory.for_identity()

STEP = "identity"


def _run_step(node: str, action: str, func, *args) -> None:
    try:
        func(*args)
    except (BackendCommandError, RescanFailedError, ValueError) as error:
        raise IdentityRewriteError(node, action, str(error)) from error


def _rewrite_ext4(node: str, source: SourceFilesystem, fs_backend) -> str:
    log.info(f"Checking filesystem on {node}...")
    _run_step(node, "check filesystem", fs_backend.check, node)
    _run_step(node, "assign random UUID", fs_backend.set_random_uuid, node)
    if source.label:
        _run_step(node, "set label", fs_backend.set_label, node, FilesystemFamily.EXT4, source.label)
        return f"new UUID, label {source.label!r}"
    return "new UUID"


def _rewrite_swap(node: str, source: SourceFilesystem, fs_backend) -> str:
    new_uuid = str(uuid.uuid4())
    _run_step(node, "assign swap UUID", fs_backend.set_swap_identity, node, new_uuid, source.label)
    return f"new UUID {new_uuid}"


def _rewrite_fat(
    node: str,
    number: int,
    mapping: FilesystemMapping,
    source: SourceFilesystem,
    fs_backend,
    table_backend,
    rescan_backend,
) -> str:
    details = []
    if source.label:
        log.info(f"Setting FAT32 label {source.label!r} on {node}")
        _run_step(node, "set FAT32 label", fs_backend.set_label, node, FilesystemFamily.FAT32, source.label)
        details.append(f"label {source.label!r}")
    else:
        log.info(f"Source {source.source_node} has no FAT32 label; keeping the fresh volume serial")
        details.append("no source label")
    if source.partition_name:
        log.info(f"Setting PARTLABEL {source.partition_name!r} on {node}")
        _run_step(
            node, "set partition name",
            table_backend.rename_partition, mapping.destination, number, source.partition_name,
        )
        details.append(f"PARTLABEL {source.partition_name!r}")
        rescan_backend.flush()
        _run_step(node, "reload partition table", rescan_backend.notify, mapping.destination)
        rescan_backend.settle()
    return ", ".join(details)


def rewrite_identities(
    mapping: FilesystemMapping,
    fs_backend,
    table_backend,
    rescan_backend,
) -> list[PartitionOutcome]:
    """Assign fresh identifiers to every destination partition with a filesystem."""
    outcomes = []
    for number in mapping.numbers:
        node = partition_node(mapping.destination, number)
        source = mapping.get(number)
        try:
            detected = fs_backend.detect(node)
        except BackendCommandError as error:
            failure = IdentityRewriteError(node, "detect filesystem", str(error))
            log.error(str(failure))
            outcomes.append(
                PartitionOutcome(number, node, STEP, OutcomeStatus.FAILED, str(failure), error=failure)
            )
            continue

        family = filesystem_family(detected.fstype)
        if not detected.fstype:
            log.debug(f"Skipping {node}: no filesystem detected")
            outcomes.append(
                PartitionOutcome(number, node, STEP, OutcomeStatus.SKIPPED, "no filesystem")
            )
            continue
        if family is None:
            log.info(f"Filesystem type {detected.fstype} on {node} not supported for UUID adjustment")
            outcomes.append(
                PartitionOutcome(
                    number, node, STEP, OutcomeStatus.UNSUPPORTED, f"{detected.fstype} not supported"
                )
            )
            continue

        try:
            if family is FilesystemFamily.EXT4:
                detail = _rewrite_ext4(node, source, fs_backend)
            elif family is FilesystemFamily.SWAP:
                detail = _rewrite_swap(node, source, fs_backend)
            else:
                detail = _rewrite_fat(
                    node, number, mapping, source, fs_backend, table_backend, rescan_backend
                )
        except IdentityRewriteError as failure:
            log.error(str(failure))
            outcomes.append(
                PartitionOutcome(number, node, STEP, OutcomeStatus.FAILED, str(failure), error=failure)
            )
            rescan_backend.flush()
            continue

        rescan_backend.flush()
        log.success(f"Updated identity of {node}: {detail}")
        outcomes.append(PartitionOutcome(number, node, STEP, OutcomeStatus.SUCCESS, detail))
    return outcomes
