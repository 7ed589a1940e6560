"""Run configuration for a single unwrap invocation.

The configuration is built once from the parsed command line (plus a few
environment overrides) and passed explicitly to the pipeline. It is frozen:
nothing downstream mutates it.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from resin_image_unwrapper.exceptions import ConfigurationError

DEFAULT_MOUNT_ROOT = Path("/tmp/resin-image-unwrapper")
DEFAULT_QEMU_IMG = "qemu-img"

MOUNTPOINT_NAMES = ("flasher-boot", "flasher-root", "output-boot", "output-root")

RAW_EXTENSION = ".img"
INTERMEDIATE_FORMAT = "qcow2"


class ImageFormat(Enum):
    """Virtual disk formats the extracted image can be converted to."""

    VDI = "vdi"
    VHD = "vhd"
    VMDK = "vmdk"

    @property
    def qemu_format(self) -> str:
        """Driver name qemu-img uses for this format."""
        return "vpc" if self is ImageFormat.VHD else self.value

    @property
    def qemu_options(self) -> Optional[str]:
        """Extra ``-o`` options for the final conversion."""
        # Fixed-size VHDs with an exact size are what Hyper-V and Azure accept.
        if self is ImageFormat.VHD:
            return "subformat=fixed,force_size"
        return None

    @classmethod
    def choices(cls) -> list[str]:
        return [member.value for member in cls]

    @classmethod
    def parse(cls, token: str) -> "ImageFormat":
        try:
            return cls(token)
        except ValueError as error:
            raise ConfigurationError(
                f"Unsupported format {token!r}, expected one of: {', '.join(cls.choices())}"
            ) from error


@dataclass(frozen=True)
class ConversionRequest:
    image_format: ImageFormat
    image_size: Optional[str] = None  # verbatim qemu-img size, e.g. "10G"


@dataclass(frozen=True)
class Owner:
    """The non-root identity that invoked the tool through sudo."""

    uid: int
    gid: int


@dataclass(frozen=True)
class UnwrapConfig:
    flasher_image: Path
    output_directory: Path
    conversion: Optional[ConversionRequest] = None
    mount_root: Path = DEFAULT_MOUNT_ROOT
    qemu_img: str = DEFAULT_QEMU_IMG
    owner: Optional[Owner] = None

    @property
    def output_image(self) -> Path:
        """Raw image extracted from the flasher."""
        return self.output_directory / f"{self.flasher_image.stem}{RAW_EXTENSION}"

    @property
    def intermediate_image(self) -> Path:
        return self.output_directory / f"{self.flasher_image.stem}.{INTERMEDIATE_FORMAT}"

    @property
    def final_image(self) -> Path:
        """Artifact left on disk after a successful run."""
        if self.conversion is None:
            return self.output_image
        return self.output_directory / (
            f"{self.flasher_image.stem}.{self.conversion.image_format.value}"
        )

    def mountpoint(self, name: str) -> Path:
        if name not in MOUNTPOINT_NAMES:
            raise KeyError(name)
        return self.mount_root / name


def default_output_directory() -> Path:
    """Directory containing the running tool."""
    return Path(sys.argv[0]).resolve().parent


def resolve_owner(environ: Mapping[str, str]) -> Optional[Owner]:
    """Identity to hand the output back to when running under sudo."""
    if os.geteuid() != 0:
        return None
    uid = environ.get("SUDO_UID")
    gid = environ.get("SUDO_GID")
    if not uid or not gid:
        return None
    try:
        owner = Owner(uid=int(uid), gid=int(gid))
    except ValueError:
        return None
    if owner.uid == 0:
        return None
    return owner


def build_config(
    flasher_image: Optional[str],
    output_directory: Optional[str] = None,
    image_format: Optional[str] = None,
    image_size: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> UnwrapConfig:
    """Validate arguments and build the run configuration.

    Raises:
        ConfigurationError: If an argument is missing, inconsistent or invalid
    """
    environ = os.environ if environ is None else environ

    if not flasher_image:
        raise ConfigurationError("--resin-image-flasher is required")
    if image_size and not image_format:
        raise ConfigurationError("--image-size requires --format")

    conversion = None
    if image_format:
        conversion = ConversionRequest(ImageFormat.parse(image_format), image_size or None)

    output_dir = Path(output_directory) if output_directory else default_output_directory()
    if not output_dir.is_dir():
        raise ConfigurationError(f"Output directory {output_dir} does not exist")

    flasher = Path(flasher_image)
    if not flasher.is_file():
        raise ConfigurationError(f"Flasher image {flasher} does not exist")

    config = UnwrapConfig(
        flasher_image=flasher,
        output_directory=output_dir,
        conversion=conversion,
        mount_root=Path(environ.get("RESIN_UNWRAP_MOUNT_ROOT", DEFAULT_MOUNT_ROOT)),
        qemu_img=environ.get("RESIN_UNWRAP_QEMU_IMG", DEFAULT_QEMU_IMG),
        owner=resolve_owner(environ),
    )

    if config.output_image.resolve() == flasher.resolve():
        raise ConfigurationError(
            f"Output image {config.output_image} would overwrite the flasher image"
        )
    return config
