"""Block device helpers shared by the replication backends.

This module wraps the small set of primitives every backend needs:

    - run_command(): Run an external tool, logging the command and its output
    - run_checked(): Same, but raise BackendCommandError on failure
    - partition_node(): Map (device, number) to a partition device node
    - partition_number(): Extract the number back out of a partition node
    - get_block_device(): Query lsblk for one device and its partitions
    - human_size(): Convert bytes to a human-readable size

Partition Node Naming:
    Device families whose kernel name ends in a digit (mmcblk0, nvme0n1,
    loop0, md127) interpose a "p" before the partition number:

        /dev/mmcblk0 + 1 -> /dev/mmcblk0p1
        /dev/nvme0n1 + 3 -> /dev/nvme0n1p3
        /dev/sda     + 2 -> /dev/sda2

    The source and destination of a replication run are frequently of
    different families (SD card to NVMe, USB stick to SATA), so every lookup
    of "the same partition on the other disk" goes through partition_node().
"""

from __future__ import annotations

import json
import re
import subprocess
from typing import Optional, Sequence

from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.exceptions import BackendCommandError

SECTOR_SIZE = 512

log = LoggerFactory.for_command()
output_log = log.bind(tags=["command", "command-output"])


def run_command(command, check=True, log_output=True, log_command=True, input_text=None):
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command, check=check, text=True, capture_output=True, input=input_text
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            output_log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            output_log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        output_log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def run_checked(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise BackendCommandError if it cannot run or fails."""
    try:
        result = run_command(list(command), check=False, input_text=input_text)
    except OSError as error:
        raise BackendCommandError(command, stderr=str(error)) from error
    if result.returncode != 0:
        raise BackendCommandError(
            command,
            returncode=result.returncode,
            stderr=(result.stderr or "").strip(),
            stdout=(result.stdout or "").strip(),
        )
    return result.stdout or ""


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PiB"


def sectors_to_bytes(sectors: int) -> int:
    return sectors * SECTOR_SIZE


def resolve_device_node(device: str) -> str:
    """Convert a device name or path to a /dev node path."""
    return device if device.startswith("/dev/") else f"/dev/{device}"


def uses_partition_separator(device: str) -> bool:
    """Return True when partition nodes of ``device`` need a "p" separator."""
    name = resolve_device_node(device).rstrip("/").rsplit("/", 1)[-1]
    return bool(name) and name[-1].isdigit()


def partition_node(device: str, number: int) -> str:
    """Return the device node of partition ``number`` on ``device``."""
    node = resolve_device_node(device)
    separator = "p" if uses_partition_separator(node) else ""
    return f"{node}{separator}{number}"


def partition_number(device: str, node: str) -> Optional[int]:
    """Extract the partition number of ``node`` if it belongs to ``device``."""
    base = resolve_device_node(device)
    separator = "p" if uses_partition_separator(base) else ""
    match = re.fullmatch(re.escape(base) + separator + r"(\d+)", resolve_device_node(node))
    if not match:
        return None
    return int(match.group(1))


def get_block_device(device: str) -> Optional[dict]:
    """Return the lsblk record for ``device`` (with children), or None."""
    node = resolve_device_node(device)
    try:
        result = run_command(
            ["lsblk", "-J", "-b", "-p", "-o", "NAME,TYPE,SIZE,MOUNTPOINT,FSTYPE,PARTLABEL", node],
            check=True,
            log_output=False,
        )
        data = json.loads(result.stdout)
    except (subprocess.CalledProcessError, OSError, json.JSONDecodeError) as error:
        log.debug(f"lsblk failed for {node}: {error}")
        return None
    devices = data.get("blockdevices", [])
    return devices[0] if devices else None


def get_children(device: dict) -> list[dict]:
    return device.get("children", []) or []


def list_partition_nodes(device: str) -> list[str]:
    """List partition nodes the kernel currently exposes for ``device``."""
    record = get_block_device(device)
    if not record:
        return []
    nodes = []
    for child in get_children(record):
        if child.get("type") != "part":
            continue
        name = child.get("name") or ""
        if partition_number(device, name) is not None:
            nodes.append(resolve_device_node(name))
    return nodes
