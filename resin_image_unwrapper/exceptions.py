"""Custom exceptions for the unwrap pipeline.

Every failure the tool can report derives from ``UnwrapError`` so the entry
point can turn it into a single ``[ERROR]`` line and a nonzero exit code.

Exception Hierarchy:
    UnwrapError (base)
        ├── ConfigurationError
        ├── AttachmentError
        ├── MountError
        ├── MissingPayloadError
        ├── ArtifactCopyError
        ├── ConversionError
        └── CommandError

The pipeline records the stage it was in when an error escaped, in the
``stage`` attribute, so callers and tests can tell which step failed.

Usage:
    from resin_image_unwrapper.exceptions import MissingPayloadError

    if not candidates:
        raise MissingPayloadError(search_dir)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from resin_image_unwrapper.pipeline import Stage


class UnwrapError(Exception):
    """Base exception for all unwrap operations."""

    stage: Optional["Stage"] = None


class ConfigurationError(UnwrapError):
    """Invalid or missing command line arguments."""


class AttachmentError(UnwrapError):
    """Loop device support is unavailable or attaching an image failed."""

    def __init__(self, image: str, reason: str):
        self.image = image
        self.reason = reason
        super().__init__(f"Failed to attach {image} to a loop device: {reason}")


class MountError(UnwrapError):
    """A partition could not be mounted."""

    def __init__(self, partition: str, mountpoint: str, reason: str = ""):
        self.partition = partition
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Failed to mount {partition} on {mountpoint}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MissingPayloadError(UnwrapError):
    """No payload image was found on the flasher root partition."""

    def __init__(self, search_dir: str):
        self.search_dir = search_dir
        super().__init__(f"No payload image found in {search_dir}")


class ArtifactCopyError(UnwrapError):
    """A boot configuration artifact is missing or could not be copied."""

    def __init__(self, artifact: str, reason: str):
        self.artifact = artifact
        self.reason = reason
        super().__init__(f"Cannot copy {artifact}: {reason}")


class ConversionError(UnwrapError):
    """qemu-img is missing or one of its steps failed."""


class CommandError(UnwrapError):
    """An external command exited with a nonzero status."""

    def __init__(self, command: Sequence[str], returncode: int, message: str):
        self.command = list(command)
        self.returncode = returncode
        super().__init__(f"Command failed ({' '.join(self.command)}): {message}")


class Interrupted(KeyboardInterrupt):
    """The run was stopped by a termination signal."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
