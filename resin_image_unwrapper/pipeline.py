"""Extraction pipeline and finalizer.

A run walks through the stages below in order. Any stage can fail, which
jumps straight to FINALIZING; finalization always runs and ends in DONE or
FAILED, keeping the error that caused the failure.

    VALIDATING -> ATTACHING -> MOUNTING -> COPYING -> CONFIGURING_BOOT
        -> FINALIZING -> DONE | FAILED

Loop devices and mounts are held in two ``ExitStack`` scopes. The mount
scope is the inner one, so on every exit path all four mount points are
released (newest first) before either loop device is detached.
"""

from __future__ import annotations

import os
import signal
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from resin_image_unwrapper.boot_config import migrate_boot_config
from resin_image_unwrapper.config import UnwrapConfig
from resin_image_unwrapper.conversion import convert_image
from resin_image_unwrapper.exceptions import Interrupted, UnwrapError
from resin_image_unwrapper.logging import get_logger
from resin_image_unwrapper.storage.loop import attached_image
from resin_image_unwrapper.storage.mount import mounted_partition
from resin_image_unwrapper.storage.payload import copy_payload, find_payload

log = get_logger(source="pipeline", tags=["pipeline"])

BOOT_PARTITION = 1
ROOT_PARTITION = 2


class Stage(Enum):
    VALIDATING = "validating"
    ATTACHING = "attaching"
    MOUNTING = "mounting"
    COPYING = "copying"
    CONFIGURING_BOOT = "configuring-boot"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class UnwrapResult:
    """Outcome of one pipeline run."""

    stage: Stage
    failed_stage: Optional[Stage] = None
    error: Optional[BaseException] = None
    artifact: Optional[Path] = None
    migrated: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        if self.error is None:
            return 0
        if isinstance(self.error, KeyboardInterrupt) and not isinstance(self.error, Interrupted):
            return 128 + int(signal.SIGINT)
        return getattr(self.error, "exit_code", 1)


def _tag(error: BaseException, stage: Stage) -> BaseException:
    """Attach ``stage`` to an error; a bare Ctrl-C becomes ``Interrupted``."""
    if isinstance(error, KeyboardInterrupt) and not isinstance(error, Interrupted):
        error = Interrupted(int(signal.SIGINT))
    if getattr(error, "stage", None) is None:
        error.stage = stage
    return error


class UnwrapPipeline:
    """Extract the payload of one flasher image according to ``config``."""

    def __init__(self, config: UnwrapConfig):
        self.config = config
        self.stage = Stage.VALIDATING
        self.assembled = False
        self.migrated: list[str] = []

    def _enter(self, stage: Stage) -> None:
        log.debug(f"Stage {self.stage.value} -> {stage.value}")
        self.stage = stage

    def _assemble(self, loops: ExitStack, mounts: ExitStack) -> None:
        config = self.config

        self._enter(Stage.ATTACHING)
        log.info(f"Attaching flasher image {config.flasher_image}")
        flasher = loops.enter_context(attached_image(config.flasher_image))

        self._enter(Stage.MOUNTING)
        flasher_boot = mounts.enter_context(
            mounted_partition(flasher.partition(BOOT_PARTITION), config.mountpoint("flasher-boot"))
        )
        flasher_root = mounts.enter_context(
            mounted_partition(flasher.partition(ROOT_PARTITION), config.mountpoint("flasher-root"))
        )

        self._enter(Stage.COPYING)
        payload = find_payload(flasher_root)
        copy_payload(payload, config.output_image)

        self._enter(Stage.CONFIGURING_BOOT)
        log.info(f"Attaching extracted image {config.output_image}")
        output = loops.enter_context(attached_image(config.output_image))
        output_boot = mounts.enter_context(
            mounted_partition(output.partition(BOOT_PARTITION), config.mountpoint("output-boot"))
        )
        mounts.enter_context(
            mounted_partition(output.partition(ROOT_PARTITION), config.mountpoint("output-root"))
        )
        self.migrated = migrate_boot_config(flasher_boot, output_boot)

    def _convert(self, artifact: Optional[Path]) -> Optional[Path]:
        config = self.config
        if self.assembled:
            return convert_image(config)
        if config.conversion is not None:
            log.warning(
                f"Skipping conversion to {config.conversion.image_format.value}, "
                "the image was not fully assembled"
            )
        return artifact

    def _restore_ownership(self, artifact: Optional[Path]) -> Optional[Path]:
        owner = self.config.owner
        if owner is None or artifact is None or not artifact.exists():
            return artifact
        try:
            os.chown(artifact, owner.uid, owner.gid)
        except OSError as error:
            log.warning(f"Could not give {artifact} back to uid {owner.uid}: {error}")
            return artifact
        log.debug(f"Changed owner of {artifact} to {owner.uid}:{owner.gid}")
        return artifact

    def run(self) -> UnwrapResult:
        """Run the pipeline and the finalizer.

        Returns:
            The result; ``result.error`` holds the failure, if any. Unwrap
            errors, OS errors and interrupts are captured, not raised.
        """
        failure: Optional[BaseException] = None
        failed_stage: Optional[Stage] = None

        try:
            with ExitStack() as loops, ExitStack() as mounts:
                self._assemble(loops, mounts)
                self._enter(Stage.FINALIZING)
                log.info("Releasing mounts and loop devices")
            self.assembled = True
        except (UnwrapError, OSError, KeyboardInterrupt) as error:
            failed_stage = self.stage
            failure = _tag(error, failed_stage)
            if self.stage is not Stage.FINALIZING:
                self._enter(Stage.FINALIZING)

        config = self.config
        artifact: Optional[Path] = None
        for step in (self._convert, self._restore_ownership):
            try:
                artifact = step(artifact)
            except (UnwrapError, OSError, KeyboardInterrupt) as error:
                # The first failure decides the exit status.
                if failure is None:
                    failed_stage = Stage.FINALIZING
                    failure = _tag(error, failed_stage)
                else:
                    log.warning(f"Finalization also failed: {error!r}")
            if artifact is None and config.output_image.exists():
                artifact = config.output_image

        self.stage = Stage.DONE if failure is None else Stage.FAILED
        return UnwrapResult(
            stage=self.stage,
            failed_stage=failed_stage,
            error=failure,
            artifact=artifact,
            migrated=tuple(self.migrated),
        )


def unwrap(config: UnwrapConfig) -> UnwrapResult:
    """Extract, configure and optionally convert the flasher's payload."""
    return UnwrapPipeline(config).run()
