import argparse
import signal
import sys

from resin_image_unwrapper.config import ImageFormat, build_config
from resin_image_unwrapper.exceptions import ConfigurationError, Interrupted
from resin_image_unwrapper.logging import LoggerFactory, setup_logging
from resin_image_unwrapper.pipeline import unwrap

log = LoggerFactory.for_system()

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resin-image-unwrapper",
        description=(
            "Extract the base image embedded in a resin flasher image, carry its "
            "boot configuration over and optionally convert it for a virtual machine."
        ),
    )
    parser.add_argument(
        "--resin-image-flasher",
        metavar="PATH",
        help="flasher image to unwrap (required)",
    )
    parser.add_argument(
        "--output-directory",
        metavar="PATH",
        help="where the extracted image is written (default: directory of this tool)",
    )
    parser.add_argument(
        "--image-size",
        metavar="SIZE",
        help="resize the converted image, e.g. 10G (requires --format)",
    )
    parser.add_argument(
        "--format",
        dest="image_format",
        metavar="{" + ",".join(ImageFormat.choices()) + "}",
        help="convert the extracted image to this virtual disk format",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    return parser


def _raise_interrupted(signum, _frame):
    raise Interrupted(signum)


def install_signal_handlers() -> None:
    """Turn termination signals into an exception so cleanup scopes unwind."""
    for signum in HANDLED_SIGNALS:
        signal.signal(signum, _raise_interrupted)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        config = build_config(
            args.resin_image_flasher,
            output_directory=args.output_directory,
            image_format=args.image_format,
            image_size=args.image_size,
        )
    except ConfigurationError as error:
        log.error(str(error))
        return 1

    install_signal_handlers()
    result = unwrap(config)

    if result.ok:
        log.info(f"Done. Extracted image: {result.artifact}")
    else:
        stage = result.failed_stage.value if result.failed_stage else "unknown"
        reason = str(result.error) or "interrupted"
        log.error(f"Failed while {stage}: {reason}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
