"""Filesystem backend built on blkid, mkfs.*, e2fsprogs and dosfstools.

Supported Families:
    ext4:   mkfs.ext4 -F, e2fsck -f -y, tune2fs -U random, e2label
    FAT32:  mkfs.vfat -F 32, fatlabel (relabeling regenerates the volume serial)
    swap:   mkswap, mkswap -U <uuid> -L <label>
"""

from __future__ import annotations

import subprocess
from typing import Optional

from gpt_replicator.domain import FilesystemFamily, FilesystemInfo
from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import run_checked, run_command
from gpt_replicator.storage.exceptions import BackendCommandError

log = LoggerFactory.for_filesystem()

# e2fsck exit status 1 means "errors corrected", which is still a clean result
E2FSCK_OK_CODES = (0, 1)
# blkid exit status 2 means "no recognizable signature"
BLKID_NOTHING_FOUND = 2


def parse_blkid_export(output: str) -> FilesystemInfo:
    """Parse ``blkid -o export`` KEY=VALUE lines."""
    values: dict[str, str] = {}
    for line in output.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return FilesystemInfo(
        fstype=values.get("TYPE") or None,
        label=values.get("LABEL") or None,
        uuid=values.get("UUID") or None,
        partition_name=values.get("PARTLABEL") or None,
    )


def build_mkfs_command(node: str, family: FilesystemFamily) -> list[str]:
    if family is FilesystemFamily.EXT4:
        return ["mkfs.ext4", "-F", node]
    if family is FilesystemFamily.FAT32:
        return ["mkfs.vfat", "-F", "32", node]
    if family is FilesystemFamily.SWAP:
        return ["mkswap", node]
    raise ValueError(f"Unsupported filesystem family: {family}")


class LinuxFilesystemBackend:
    """Filesystem backend for Linux userspace tools."""

    def detect(self, node: str) -> FilesystemInfo:
        """Return the filesystem type, label and PARTLABEL of ``node``."""
        command = ["blkid", "-c", "/dev/null", "-o", "export", node]
        try:
            result = run_command(command, check=False)
        except OSError as error:
            raise BackendCommandError(command, stderr=str(error)) from error
        if result.returncode == BLKID_NOTHING_FOUND:
            return FilesystemInfo()
        if result.returncode != 0:
            raise BackendCommandError(
                command,
                returncode=result.returncode,
                stderr=(result.stderr or "").strip(),
            )
        return parse_blkid_export(result.stdout or "")

    def create(self, node: str, family: FilesystemFamily) -> None:
        log.debug(f"Creating {family.display_name} on {node}")
        run_checked(build_mkfs_command(node, family))

    def check(self, node: str) -> None:
        """Force a full ext consistency check, fixing what it finds."""
        command = ["e2fsck", "-f", "-y", node]
        try:
            result = run_command(command, check=False)
        except (OSError, subprocess.SubprocessError) as error:
            raise BackendCommandError(command, stderr=str(error)) from error
        if result.returncode not in E2FSCK_OK_CODES:
            raise BackendCommandError(
                command,
                returncode=result.returncode,
                stderr=(result.stderr or "").strip(),
                stdout=(result.stdout or "").strip(),
            )

    def set_random_uuid(self, node: str) -> None:
        run_checked(["tune2fs", "-U", "random", node])

    def set_swap_identity(self, node: str, new_uuid: str, label: Optional[str] = None) -> None:
        """Rewrite the swap signature with ``new_uuid`` (and ``label``)."""
        command = ["mkswap", "-U", new_uuid]
        if label:
            command.extend(["-L", label])
        command.append(node)
        run_checked(command)

    def set_label(self, node: str, family: FilesystemFamily, label: str) -> None:
        if family is FilesystemFamily.EXT4:
            run_checked(["e2label", node, label])
        elif family is FilesystemFamily.FAT32:
            run_checked(["fatlabel", node, label])
        else:
            raise ValueError(f"Cannot set a label on {family.display_name}")
