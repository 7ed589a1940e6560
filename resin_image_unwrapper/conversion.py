"""Raw to virtual disk conversion through qemu-img.

qcow2 is used as the pivot format: the raw image is converted to qcow2,
optionally resized there, then converted to the requested format. Only the
final artifact is left on disk.
"""

from __future__ import annotations

from pathlib import Path

from resin_image_unwrapper.config import INTERMEDIATE_FORMAT, UnwrapConfig
from resin_image_unwrapper.exceptions import CommandError, ConversionError
from resin_image_unwrapper.logging import LoggerFactory
from resin_image_unwrapper.storage.commands import find_tool, run_checked_command

log = LoggerFactory.for_convert()


def _qemu_img(command: list[str]) -> None:
    try:
        run_checked_command(command)
    except CommandError as error:
        raise ConversionError(str(error)) from error


def convert_image(config: UnwrapConfig) -> Path:
    """Convert the extracted raw image to the requested format.

    Args:
        config: Run configuration with a conversion request

    Returns:
        Path of the converted image

    Raises:
        ConversionError: If qemu-img is missing or a step fails
    """
    request = config.conversion
    if request is None:
        return config.output_image

    qemu_img = find_tool(config.qemu_img)
    if not qemu_img:
        raise ConversionError(f"{config.qemu_img} not found, cannot convert to {request.image_format.value}")

    raw = config.output_image
    intermediate = config.intermediate_image
    final = config.final_image

    try:
        log.info(f"Converting {raw.name} to {INTERMEDIATE_FORMAT}")
        _qemu_img([qemu_img, "convert", "-f", "raw", "-O", INTERMEDIATE_FORMAT, str(raw), str(intermediate)])

        if request.image_size:
            log.info(f"Resizing {intermediate.name} to {request.image_size}")
            _qemu_img([qemu_img, "resize", "-f", INTERMEDIATE_FORMAT, str(intermediate), request.image_size])

        command = [qemu_img, "convert", "-f", INTERMEDIATE_FORMAT, "-O", request.image_format.qemu_format]
        if request.image_format.qemu_options:
            command += ["-o", request.image_format.qemu_options]
        command += [str(intermediate), str(final)]
        log.info(f"Converting {intermediate.name} to {request.image_format.value}")
        _qemu_img(command)
    except BaseException:
        # On failure only the raw image is left behind.
        final.unlink(missing_ok=True)
        raise
    finally:
        intermediate.unlink(missing_ok=True)

    raw.unlink(missing_ok=True)
    log.info(f"Converted image written to {final}")
    return final
