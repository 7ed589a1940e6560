"""Command execution utilities.

All external tools are invoked with argument lists, never through a shell.
"""

from __future__ import annotations

import shutil
import subprocess
from typing import Optional, Sequence

from resin_image_unwrapper.exceptions import CommandError
from resin_image_unwrapper.logging import get_logger

log = get_logger(source="command", tags=["command"])


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise CommandError if it fails."""
    command = [str(part) for part in command]
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as error:
        raise CommandError(command, 127, f"{command[0]} not found") from error
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        message = stderr or stdout or "Command failed"
        raise CommandError(command, result.returncode, message)
    return result.stdout or ""


def run_quiet_command(command: Sequence[str]) -> bool:
    """Run a command whose failure is acceptable; return True on success."""
    try:
        run_checked_command(command)
    except CommandError as error:
        log.debug(str(error))
        return False
    return True


def find_tool(name: str) -> Optional[str]:
    """Return the absolute path of ``name`` on PATH, or None when missing."""
    return shutil.which(name)
