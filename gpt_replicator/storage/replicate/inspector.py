"""Read a device's size and partition map into a BlockDevice snapshot."""

from __future__ import annotations

from gpt_replicator.domain import BlockDevice, PartitionEntry
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import resolve_device_node
from gpt_replicator.storage.exceptions import BackendCommandError, DeviceUnreadableError

log = LoggerFactory.for_inspector()


def _check_table(device: str, total_sectors: int, entries: list[PartitionEntry]) -> None:
    seen: set[int] = set()
    previous = None
    for entry in sorted(entries, key=lambda item: item.start):
        if entry.number <= 0 or entry.number in seen:
            raise DeviceUnreadableError(device, f"invalid partition number {entry.number}")
        seen.add(entry.number)
        if entry.end < entry.start:
            raise DeviceUnreadableError(
                device, f"partition {entry.number} ends before it starts"
            )
        if entry.end >= total_sectors:
            raise DeviceUnreadableError(
                device, f"partition {entry.number} extends past the end of the device"
            )
        if previous is not None and previous.overlaps(entry):
            raise DeviceUnreadableError(
                device,
                f"partitions {previous.number} and {entry.number} overlap",
            )
        previous = entry


def _read_entries(node: str, total_sectors: int, table_backend) -> list[PartitionEntry]:
    try:
        entries = list(table_backend.read_table(node))
    except (BackendCommandError, ValueError) as error:
        raise DeviceUnreadableError(node, str(error)) from error
    _check_table(node, total_sectors, entries)
    return entries


def read_layout(device: str, table_backend, *, strict: bool = True) -> BlockDevice:
    """Snapshot the size and partition map of ``device``.

    An empty table (e.g. a freshly zapped disk) yields a BlockDevice with no
    partitions. With ``strict=False`` only the size must be readable: a
    table that cannot be parsed or describes an impossible layout is logged
    and reported as empty. Use it for a destination that is about to be
    zapped.

    Raises:
        DeviceUnreadableError: If the device cannot be queried or the backend
            output is malformed or describes an impossible table
    """
    node = resolve_device_node(device)
    try:
        total_sectors = table_backend.total_sectors(node)
    except (BackendCommandError, ValueError) as error:
        raise DeviceUnreadableError(node, str(error)) from error
    if total_sectors <= 0:
        raise DeviceUnreadableError(node, f"reported size is {total_sectors} sectors")

    try:
        entries = _read_entries(node, total_sectors, table_backend)
    except DeviceUnreadableError as error:
        if strict:
            raise
        log.warning(f"Ignoring existing partition table on {node}: {error}")
        entries = []

    layout = BlockDevice(
        path=node,
        total_sectors=total_sectors,
        partitions=tuple(sorted(entries, key=lambda entry: entry.start)),
    )
    log.debug(
        f"{node}: {total_sectors} sectors, {len(layout.partitions)} partitions, "
        f"last used sector {layout.last_used_sector}"
    )
    return layout
