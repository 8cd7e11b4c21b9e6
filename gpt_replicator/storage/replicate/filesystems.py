"""Recreate empty filesystems of the source's family on each destination partition.

| Source type          | Destination action     |
|----------------------|------------------------|
| ext2 / ext3 / ext4   | create ext4            |
| vfat / fat32         | create FAT32           |
| swap                 | create swap            |
| anything else / none | leave the partition raw |

A failure on one partition is recorded as a FAILED outcome and the loop moves
on to the next partition.
"""

from __future__ import annotations

from typing import Iterable

from gpt_replicator.domain import (
    BlockDevice,
    FilesystemInfo,
    FilesystemMapping,
    OutcomeStatus,
    PartitionOutcome,
    SourceFilesystem,
)
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import partition_node, resolve_device_node
from gpt_replicator.storage.exceptions import BackendCommandError, FilesystemCreateError

log = LoggerFactory.for_filesystem()

STEP = "filesystem"


def build_filesystem_mapping(
    source: BlockDevice,
    destination: str,
    numbers: Iterable[int],
    fs_backend,
) -> FilesystemMapping:
    """Detect the source filesystem behind every destination partition number.

    The GPT partition name comes from the source table snapshot; blkid's
    PARTLABEL is only used when the snapshot has no name.
    """
    partitions = {}
    for number in sorted(numbers):
        source_node = partition_node(source.path, number)
        try:
            info = fs_backend.detect(source_node)
        except BackendCommandError as error:
            log.warning(f"Could not probe {source_node}: {error}")
            info = FilesystemInfo()
        entry = source.get_partition(number)
        table_name = entry.name if entry is not None else ""
        partitions[number] = SourceFilesystem(
            source_node=source_node,
            fstype=info.fstype,
            label=info.label,
            partition_name=table_name or info.partition_name,
        )
        log.debug(
            f"Source partition {source_node}: type={info.fstype or 'none'} "
            f"label={info.label or '-'}"
        )
    return FilesystemMapping(
        source=source.path,
        destination=resolve_device_node(destination),
        partitions=partitions,
    )


def replicate_filesystems(mapping: FilesystemMapping, fs_backend) -> list[PartitionOutcome]:
    """Create the matching filesystem on every mapped destination partition."""
    outcomes = []
    for number in mapping.numbers:
        node = partition_node(mapping.destination, number)
        source = mapping.get(number)
        family = source.family

        if family is None:
            if source.fstype:
                log.info(
                    f"Unsupported filesystem {source.fstype} on {source.source_node}. "
                    f"Leaving {node} raw."
                )
                outcomes.append(
                    PartitionOutcome(
                        number, node, STEP, OutcomeStatus.UNSUPPORTED,
                        f"source type {source.fstype} left raw",
                    )
                )
            else:
                log.info(f"Source partition {source.source_node} has no filesystem. Leaving {node} empty.")
                outcomes.append(
                    PartitionOutcome(number, node, STEP, OutcomeStatus.SKIPPED, "no source filesystem")
                )
            continue

        log.info(f"Creating {family.display_name} filesystem on {node}...")
        try:
            fs_backend.create(node, family)
        except (BackendCommandError, ValueError) as error:
            failure = FilesystemCreateError(node, family.display_name, str(error))
            log.error(str(failure))
            outcomes.append(
                PartitionOutcome(
                    number, node, STEP, OutcomeStatus.FAILED, str(failure), error=failure
                )
            )
            continue
        log.success(f"{family.display_name} filesystem created on {node}")
        outcomes.append(
            PartitionOutcome(
                number, node, STEP, OutcomeStatus.SUCCESS, f"created {family.display_name}"
            )
        )
    return outcomes
