"""Partition mounting with argument-list subprocess calls.

Functions:
    - is_mounted(): Check whether a directory is an active mount point
    - mount_partition(): Mount a partition device node on a directory
    - unmount_partition(): Unmount a directory, best effort
    - mounted_partition(): Scoped mount that always unmounts
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from resin_image_unwrapper.exceptions import CommandError, MountError
from resin_image_unwrapper.logging import LoggerFactory
from resin_image_unwrapper.storage.commands import run_checked_command, run_quiet_command

log = LoggerFactory.for_mount()

_FORBIDDEN_CHARS = [";", "&", "|", "$", "`", "\n", "\r", " "]


def _validate_partition(partition: str) -> None:
    if not isinstance(partition, str) or not partition.startswith("/dev/"):
        raise ValueError(f"Invalid partition path: {partition}")
    if any(char in partition for char in _FORBIDDEN_CHARS):
        raise ValueError(f"Partition path contains invalid characters: {partition}")


def is_mounted(mountpoint: Path) -> bool:
    return os.path.ismount(mountpoint)


def mount_partition(partition: str, mountpoint: Path) -> Path:
    """Mount a partition on ``mountpoint``, creating the directory first.

    Args:
        partition: Device node (e.g., '/dev/loop0p1')
        mountpoint: Target directory

    Returns:
        The mount point

    Raises:
        ValueError: If the partition path is invalid
        MountError: If the directory cannot be created or mount fails
    """
    _validate_partition(partition)

    if is_mounted(mountpoint):
        raise MountError(partition, str(mountpoint), "mount point already in use")

    try:
        run_checked_command(["mkdir", "-p", str(mountpoint)])
        run_checked_command(["mount", partition, str(mountpoint)])
    except CommandError as error:
        raise MountError(partition, str(mountpoint), str(error)) from error

    log.info(f"Mounted {partition} on {mountpoint}")
    return mountpoint


def unmount_partition(mountpoint: Path) -> bool:
    """Unmount ``mountpoint``. Failures are logged, never raised.

    Returns:
        True if nothing is mounted there afterwards
    """
    if not is_mounted(mountpoint):
        return True
    if run_quiet_command(["umount", str(mountpoint)]):
        log.debug(f"Unmounted {mountpoint}")
        return True
    log.warning(f"Failed to unmount {mountpoint}")
    return False


@contextmanager
def mounted_partition(partition: str, mountpoint: Path) -> Iterator[Path]:
    """Mount ``partition`` for the duration of a ``with`` block."""
    mount_partition(partition, mountpoint)
    try:
        yield mountpoint
    finally:
        unmount_partition(mountpoint)
