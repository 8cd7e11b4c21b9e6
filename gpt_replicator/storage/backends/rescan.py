"""Device-rescan backend: make the kernel and udev see a rewritten table.

``rescan()`` asks the kernel to re-read the partition table with partprobe,
falls back to ``blockdev --rereadpt`` and then waits for udev to settle and
for the expected partition nodes to appear.
"""

from __future__ import annotations

import os
import subprocess
import time
from typing import Iterable

from gpt_replicator.logging import LoggerFactory
from gpt_replicator.storage.devices import (
    partition_node,
    resolve_device_node,
    run_checked,
    run_command,
)
from gpt_replicator.storage.exceptions import BackendCommandError, RescanFailedError

log = LoggerFactory.for_rescan()

NODE_POLL_INTERVAL_SECONDS = 0.5


class UdevRescanBackend:
    """Rescan backend using partprobe, blockdev and udevadm."""

    def __init__(self, settle_timeout_seconds: float = 30.0):
        self.settle_timeout_seconds = settle_timeout_seconds

    def flush(self) -> None:
        """Flush dirty buffers to disk."""
        try:
            run_command(["sync"], check=False, log_command=False)
        except OSError as error:
            log.warning(f"sync failed: {error}")

    def notify(self, device: str) -> None:
        """Tell the kernel the partition table of ``device`` changed.

        Raises:
            RescanFailedError: If neither partprobe nor blockdev --rereadpt succeed
        """
        node = resolve_device_node(device)
        try:
            run_checked(["partprobe", node])
            return
        except BackendCommandError as error:
            log.warning(f"partprobe failed, forcing partition table reread: {error}")
        try:
            run_checked(["blockdev", "--rereadpt", node])
        except BackendCommandError as error:
            raise RescanFailedError(node, str(error)) from error

    def settle(self) -> None:
        """Block until udev has processed all pending events."""
        timeout = max(1, int(self.settle_timeout_seconds))
        try:
            run_command(["udevadm", "settle", f"--timeout={timeout}"], check=True)
        except (subprocess.CalledProcessError, OSError) as error:
            log.warning(f"udevadm settle did not complete: {error}")

    def wait_for_partitions(self, device: str, numbers: Iterable[int]) -> None:
        """Wait until every expected partition node exists.

        Raises:
            RescanFailedError: If some nodes are still missing after the timeout
        """
        expected = [partition_node(device, number) for number in sorted(numbers)]
        deadline = time.monotonic() + self.settle_timeout_seconds
        while True:
            missing = [node for node in expected if not os.path.exists(node)]  # noqa: PTH110
            if not missing:
                log.debug(f"All {len(expected)} partition nodes present on {device}")
                return
            if time.monotonic() >= deadline:
                raise RescanFailedError(
                    resolve_device_node(device),
                    f"partition nodes did not appear: {', '.join(missing)}",
                )
            time.sleep(NODE_POLL_INTERVAL_SECONDS)

    def rescan(self, device: str, numbers: Iterable[int] = ()) -> None:
        """Flush, notify the kernel, settle udev and wait for partition nodes."""
        self.flush()
        log.info(f"Reloading partition table on {resolve_device_node(device)}")
        self.notify(device)
        self.settle()
        self.wait_for_partitions(device, numbers)
