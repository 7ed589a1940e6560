"""Loop device attachment for disk image files.

An image is attached with partition scanning so that its partitions appear
as ``<loop>p1``, ``<loop>p2``... Every attachment must be detached exactly
once; ``attached_image()`` ties the detach to a ``with`` scope.
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from resin_image_unwrapper.exceptions import AttachmentError, CommandError
from resin_image_unwrapper.logging import LoggerFactory
from resin_image_unwrapper.storage.commands import (
    find_tool,
    run_checked_command,
    run_quiet_command,
)

log = LoggerFactory.for_loop()

PARTITION_WAIT_SECONDS = 5.0
PARTITION_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class LoopAttachment:
    """An image file exposed as a loop block device."""

    image: Path
    device: str  # e.g., "/dev/loop3"

    def partition(self, index: int) -> str:
        """Device node of partition ``index`` (1-based)."""
        return f"{self.device}p{index}"


def _wait_for_partitions(attachment: LoopAttachment, count: int) -> None:
    deadline = time.monotonic() + PARTITION_WAIT_SECONDS
    nodes = [attachment.partition(index) for index in range(1, count + 1)]
    while True:
        missing = [node for node in nodes if not os.path.exists(node)]
        if not missing:
            return
        if time.monotonic() >= deadline:
            raise AttachmentError(
                str(attachment.image),
                f"partition nodes did not appear: {', '.join(missing)}",
            )
        time.sleep(PARTITION_POLL_INTERVAL)


def attach_image(image: Path, partitions: int = 2) -> LoopAttachment:
    """Attach ``image`` to the first free loop device with partition scanning.

    Args:
        image: Disk image file to attach
        partitions: Number of partition nodes that must appear

    Returns:
        The loop attachment

    Raises:
        AttachmentError: If loop devices are unavailable or losetup fails
    """
    if os.geteuid() != 0:
        raise AttachmentError(str(image), "loop devices require root privileges")
    if not find_tool("losetup"):
        raise AttachmentError(str(image), "losetup not found")

    try:
        output = run_checked_command(
            ["losetup", "--find", "--show", "--partscan", str(image)]
        )
    except CommandError as error:
        raise AttachmentError(str(image), str(error)) from error

    device = output.strip()
    if not device.startswith("/dev/"):
        raise AttachmentError(str(image), f"unexpected losetup output: {device!r}")

    attachment = LoopAttachment(image=image, device=device)
    log.info(f"Attached {image} to {device}")
    try:
        _wait_for_partitions(attachment, partitions)
    except AttachmentError:
        detach_image(attachment)
        raise
    return attachment


def detach_image(attachment: LoopAttachment) -> bool:
    """Detach a loop device. Failures are logged, never raised."""
    if run_quiet_command(["losetup", "--detach", attachment.device]):
        log.debug(f"Detached {attachment.device}")
        return True
    log.warning(f"Failed to detach {attachment.device}")
    return False


@contextmanager
def attached_image(image: Path, partitions: int = 2) -> Iterator[LoopAttachment]:
    """Attach ``image`` for the duration of a ``with`` block."""
    attachment = attach_image(image, partitions)
    try:
        yield attachment
    finally:
        detach_image(attachment)
