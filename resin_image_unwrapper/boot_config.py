"""Boot partition configuration migration.

Copies the device configuration a flasher image carries on its boot
partition into the boot partition of the extracted image:

- ``splash/*``          mandatory, copied into the existing splash directory
                        (hidden entries skipped, as a shell glob would)
- ``config.json``       mandatory, overwrites the destination file
- ``system-connections`` optional, replaces the destination directory
- ``system-proxy``       optional, replaces the destination directory

Directories that are replaced are deleted on the destination first, so the
result mirrors the flasher exactly instead of merging with stale files.
"""

from __future__ import annotations

from pathlib import Path

from resin_image_unwrapper.exceptions import ArtifactCopyError, CommandError
from resin_image_unwrapper.logging import LoggerFactory
from resin_image_unwrapper.storage.commands import run_checked_command

log = LoggerFactory.for_boot()

SPLASH_DIR = "splash"
CONFIG_JSON = "config.json"
REPLACED_DIRS = ("system-connections", "system-proxy")


def _run(artifact: str, command: list[str]) -> None:
    try:
        run_checked_command(command)
    except CommandError as error:
        raise ArtifactCopyError(artifact, str(error)) from error


def copy_splash(source_boot: Path, target_boot: Path) -> None:
    source = source_boot / SPLASH_DIR
    if not source.is_dir():
        raise ArtifactCopyError(SPLASH_DIR, f"{source} does not exist")

    entries = sorted(str(entry) for entry in source.iterdir() if not entry.name.startswith("."))
    if not entries:
        log.warning(f"{source} is empty, nothing to copy")
        return

    target = target_boot / SPLASH_DIR
    _run(SPLASH_DIR, ["mkdir", "-p", str(target)])
    _run(SPLASH_DIR, ["cp", "-r", *entries, str(target)])
    log.info(f"Copied {SPLASH_DIR}")


def copy_config_json(source_boot: Path, target_boot: Path) -> None:
    source = source_boot / CONFIG_JSON
    if not source.is_file():
        raise ArtifactCopyError(CONFIG_JSON, f"{source} does not exist")
    _run(CONFIG_JSON, ["cp", str(source), str(target_boot / CONFIG_JSON)])
    log.info(f"Copied {CONFIG_JSON}")


def replace_directory(source_boot: Path, target_boot: Path, name: str) -> bool:
    """Replace ``name`` on the target with the flasher's copy, if it has one.

    Returns:
        True if the directory was migrated
    """
    source = source_boot / name
    if not source.exists():
        log.debug(f"No {name} on flasher boot partition")
        return False

    target = target_boot / name
    _run(name, ["rm", "-rf", str(target)])
    _run(name, ["cp", "-r", str(source), str(target)])
    log.info(f"Replaced {name}")
    return True


def migrate_boot_config(source_boot: Path, target_boot: Path) -> list[str]:
    """Copy every configuration artifact from ``source_boot`` to ``target_boot``.

    Returns:
        Names of the artifacts that were copied, in copy order

    Raises:
        ArtifactCopyError: If a mandatory artifact is missing or a copy fails
    """
    copy_splash(source_boot, target_boot)
    copy_config_json(source_boot, target_boot)
    migrated = [SPLASH_DIR, CONFIG_JSON]
    for name in REPLACED_DIRS:
        if replace_directory(source_boot, target_boot, name):
            migrated.append(name)
    return migrated
