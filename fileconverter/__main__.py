"""
FileConverter command line.

    fileconverter convert input.wav output.mp3 --type mp3 \\
        --setting AudioEncodingMode=Mp3VBR --setting AudioBitrate=190
    fileconverter serve --port 8766
"""

import argparse
import logging
import sys
from typing import Dict, List, Optional, Union

from . import __version__
from .config import get_config, load_config, set_config
from .conversion import ConversionError, ConversionJob
from .logging_config import setup_logging
from .models import ConversionRequest, OutputType, SettingKey

logger = logging.getLogger("fileconverter")


def parse_setting(text: str) -> tuple:
    """Parse KEY=VALUE; numbers become int/float, anything else stays a string."""
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {text!r}")

    key, raw = text.split("=", 1)
    try:
        setting_key = SettingKey(key.strip())
    except ValueError:
        known = ", ".join(k.value for k in SettingKey)
        raise argparse.ArgumentTypeError(f"Unknown setting {key!r} (known: {known})")

    value: Union[int, float, str]
    raw = raw.strip()
    try:
        value = int(raw)
    except ValueError:
        try:
            value = float(raw)
        except ValueError:
            value = raw
    return setting_key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fileconverter", description="Convert media files with FFmpeg")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to fileconverter.yaml")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert one file")
    convert.add_argument("input", help="Input media file")
    convert.add_argument("output", help="Output file")
    convert.add_argument(
        "--type", "-t",
        dest="output_type",
        required=True,
        choices=[t.value for t in OutputType],
        help="Output format",
    )
    convert.add_argument(
        "--setting", "-s",
        dest="settings",
        action="append",
        type=parse_setting,
        default=[],
        metavar="KEY=VALUE",
        help="Conversion setting, e.g. AudioBitrate=192 (repeatable)",
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address")
    serve.add_argument("--port", type=int, help="Port")

    return parser


def _print_progress(progress: float) -> None:
    sys.stderr.write(f"\rConverting... {progress * 100:5.1f}%")
    sys.stderr.flush()


def run_convert(args: argparse.Namespace) -> int:
    settings: Dict[SettingKey, Union[int, float, str]] = dict(args.settings)
    request = ConversionRequest(
        input_path=args.input,
        output_path=args.output,
        output_type=OutputType(args.output_type),
        settings=settings,
    )

    job = ConversionJob(request, progress_callback=_print_progress)
    try:
        job.run()
    except ConversionError as e:
        sys.stderr.write("\n")
        logger.error(f"Conversion failed: {e.message}")
        return 1
    except KeyboardInterrupt:
        job.cancel()
        sys.stderr.write("\nCancelled\n")
        return 130

    sys.stderr.write("\n")
    print(args.output)
    return 0


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn
    from .api import app

    config = get_config()
    uvicorn.run(
        app,
        host=args.host or config.server.host,
        port=args.port or config.server.port,
        log_config=None,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    set_config(config)
    setup_logging(config.logging)

    if args.command == "convert":
        return run_convert(args)
    return run_serve(args)


if __name__ == "__main__":
    sys.exit(main())
