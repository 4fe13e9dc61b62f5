import argparse
import os
import signal
import sys
from pathlib import Path

from utm_repack.__version__ import __version__
from utm_repack.config import settings
from utm_repack.logging import LoggerFactory, setup_logging
from utm_repack.pipeline import runner
from utm_repack.storage.exceptions import PackagerError


log = LoggerFactory.for_system()

EXIT_INTERRUPTED = 130


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="utm-repack",
        description="Turn a compressed .img.xz disk image into a UTM/QEMU VM package.",
    )
    parser.add_argument("--source", help="Compressed image to use (default: $SOURCE_FILE or a directory scan)")
    parser.add_argument("--image-version", help="Version used for naming (default: $VERSION or from the file name)")
    parser.add_argument("--image-dir", help="Local mode: directory scanned for images and receiving the output")
    parser.add_argument("--work-dir", help="Workspace root (default: current directory)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--ci", dest="ci_mode", action="store_const", const=True, help="Force cloud (CI) mode")
    mode.add_argument("--local", dest="ci_mode", action="store_const", const=False, help="Force local mode")
    parser.add_argument("--settings", help="Path to a JSON settings file")
    parser.add_argument("--log-dir", help="Also write log files to this directory")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _raise_system_exit(signum, _frame):
    # Unwind through the cleanup guard like a shell EXIT trap would
    raise SystemExit(128 + signum)


def install_signal_handlers():
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _raise_system_exit)


def main(argv=None, environ=None):
    args = parse_args(argv)
    environ = os.environ if environ is None else environ
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=Path(args.log_dir) if args.log_dir else None,
        environ=environ,
    )
    install_signal_handlers()

    config = settings.build_config(
        environ,
        settings=settings.load_settings(Path(args.settings)) if args.settings else None,
        ci_mode=args.ci_mode,
        source_file=args.source,
        version=args.image_version,
        image_dir=args.image_dir,
        workspace=args.work_dir,
    )

    try:
        runner.run(config)
    except PackagerError as error:
        log.error(str(error))
        return error.exit_code
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
