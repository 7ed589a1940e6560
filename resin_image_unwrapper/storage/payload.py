"""Payload image discovery on a mounted flasher root partition."""

from __future__ import annotations

from pathlib import Path

from resin_image_unwrapper.exceptions import ArtifactCopyError, CommandError, MissingPayloadError
from resin_image_unwrapper.logging import LoggerFactory
from resin_image_unwrapper.storage.commands import run_checked_command

log = LoggerFactory.for_payload()

PAYLOAD_DIR = "opt"


def list_payload_candidates(root_mount: Path) -> list[Path]:
    """Regular files below ``<root_mount>/opt`` in lexical path order."""
    search_dir = root_mount / PAYLOAD_DIR
    if not search_dir.is_dir():
        return []
    return sorted(
        path
        for path in search_dir.rglob("*")
        if path.is_file() and not path.is_symlink()
    )


def find_payload(root_mount: Path) -> Path:
    """Return the payload image on the flasher root partition.

    Exactly one candidate is expected. When several exist the lexically
    first one is used and the rest are reported.

    Raises:
        MissingPayloadError: If no regular file exists under ``opt``
    """
    candidates = list_payload_candidates(root_mount)
    if not candidates:
        raise MissingPayloadError(str(root_mount / PAYLOAD_DIR))

    payload = candidates[0]
    if len(candidates) > 1:
        others = ", ".join(path.name for path in candidates[1:])
        log.warning(f"Multiple payload candidates found, using {payload.name}; ignoring {others}")
    log.info(f"Found payload image {payload}")
    return payload


def copy_payload(payload: Path, destination: Path) -> Path:
    """Copy the payload image out of the flasher to ``destination``."""
    log.info(f"Copying {payload.name} to {destination}")
    try:
        run_checked_command(["cp", "--sparse=always", str(payload), str(destination)])
    except CommandError as error:
        raise ArtifactCopyError(str(payload), str(error)) from error
    return destination
