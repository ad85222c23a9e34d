"""Read a piped access log on stdin and split it into per-vhost files."""

import argparse
import io
import logging
import signal
import sys
from typing import BinaryIO, Callable, List, Optional, TextIO

from sqlalchemy.exc import ArgumentError

from vhostlog import __version__
from vhostlog.core.config import LOG_FORMATS, Settings, get_settings
from vhostlog.core.database import build_engine, build_session_factory, check_connection
from vhostlog.core.exceptions import ConfigurationError, VhostlogError
from vhostlog.services.accounting import SqlTrafficStore, TrafficStore
from vhostlog.services.multiplexer import LogMultiplexer
from vhostlog.services.privileges import drop_privileges

logger = logging.getLogger(__name__)

VERSION_TEXT = f"""vhostlog {__version__} (apache/lighttpd logfile splitter)

This is free software; see the source for copying conditions.  There is NO
warranty; not even for MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE."""


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vhostlog",
        description=(
            "Handles a piped logfile from a web server, splitting it into its "
            "host components, and rotates the files daily."
        ),
        epilog=(
            "When running with -a, performance may improve, but this might confuse "
            "some log analysis software that expects complete log entries at all times."
        ),
    )
    parser.add_argument("logdir", nargs="?", help="base log directory (must exist)")
    parser.add_argument("-a", "--no-flush", dest="flush", action="store_false", default=None,
                        help="do not flush files after every line")
    parser.add_argument("-n", "--no-rotate", dest="rotate", action="store_false", default=None,
                        help="don't rotate files")
    parser.add_argument("-k", "--known-only", action="store_true", default=None,
                        help="known vhosts only")
    parser.add_argument("--known-host", action="append", dest="known_hosts", metavar="NAME",
                        help="vhost to accept in known-only mode; may be repeated "
                             "(default: any vhost with an existing directory)")
    parser.add_argument("-f", "--max-files", type=int, metavar="MAXFILES",
                        help="max number of files to keep open (default: 100)")
    parser.add_argument("-u", "--user", help="user to switch to when running as root")
    parser.add_argument("-g", "--group", help="group to switch to when running as root")
    parser.add_argument("--chroot", help="directory to chroot into before reading input")
    parser.add_argument("-t", "--template",
                        help="filename template as understood by strftime (default: %%Y%%m%%d-access.log)")
    parser.add_argument("-s", "--symlink", nargs="?", const="", metavar="SYMLINK",
                        help="maintain symlink to most recent log file (default: access.log)")
    parser.add_argument("-d", "--database-url", metavar="URL",
                        help="SQLAlchemy database URL; enables traffic accounting")
    parser.add_argument("--flush-interval", type=float, metavar="SECONDS",
                        help="seconds between traffic flushes (default: 60)")
    parser.add_argument("--log-format", choices=LOG_FORMATS,
                        help="count transferred bytes from this access log format")
    parser.add_argument("-x", "--ignore-www", action="store_true", default=None,
                        help="ignore www subdomain")
    parser.add_argument("-w", "--subdir", help="write to SUBDIR in vhost directory")
    parser.add_argument("--log-level", help="diagnostic log level (default: INFO)")
    parser.add_argument("-v", "--version", action="version", version=VERSION_TEXT)
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.logdir is not None:
        overrides["BASE_DIR"] = args.logdir
    if args.flush is not None:
        overrides["FLUSH"] = args.flush
    if args.rotate is not None:
        overrides["ROTATE"] = args.rotate
    if args.known_only is not None:
        overrides["KNOWN_ONLY"] = args.known_only
    if args.known_hosts:
        overrides["KNOWN_HOSTS"] = args.known_hosts
    if args.max_files is not None:
        overrides["MAX_HANDLES"] = args.max_files
    if args.user is not None:
        overrides["USER"] = args.user
    if args.group is not None:
        overrides["GROUP"] = args.group
    if args.chroot is not None:
        overrides["CHROOT"] = args.chroot
    if args.template is not None:
        overrides["TEMPLATE"] = args.template
    if args.symlink is not None:
        overrides["SYMLINK"] = True
        if args.symlink:
            overrides["SYMLINK_NAME"] = args.symlink
    if args.database_url is not None:
        overrides["DATABASE_URL"] = args.database_url
        overrides["ACCOUNTING"] = True
    if args.flush_interval is not None:
        overrides["FLUSH_INTERVAL"] = args.flush_interval
    if args.log_format is not None:
        overrides["LOG_FORMAT"] = args.log_format
    if args.ignore_www is not None:
        overrides["IGNORE_WWW"] = args.ignore_www
    if args.subdir is not None:
        overrides["SUBDIR"] = args.subdir
    if args.log_level is not None:
        overrides["LOG_LEVEL"] = args.log_level
    return get_settings(**overrides)


def build_store(settings: Settings) -> Optional[TrafficStore]:
    if not settings.ACCOUNTING:
        return None
    try:
        engine = build_engine(settings.DATABASE_URL)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database URL: {e}") from e
    check_connection(engine)
    logger.info("Connected to traffic database")
    return SqlTrafficStore(build_session_factory(engine))


def open_stdin(buffer: BinaryIO) -> TextIO:
    # Only "\n" ends a record; a bare "\r" belongs to the payload.
    return io.TextIOWrapper(buffer, encoding="utf-8", errors="surrogateescape", newline="\n")


def terminate_handler(multiplexer: LogMultiplexer) -> Callable:
    """SIGTERM: stop reading; exit at once only when nothing is in flight."""

    def _terminate(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        multiplexer.request_stop()
        if multiplexer.interruptible:
            # Blocked in readline; unwinds through serve()'s shutdown.
            sys.exit(0)

    return _terminate


def install_signal_handlers(multiplexer: LogMultiplexer) -> None:
    # HUP only raises a flag; files are closed between two lines.
    signal.signal(signal.SIGHUP, lambda signum, frame: multiplexer.request_maintenance())
    signal.signal(signal.SIGTERM, terminate_handler(multiplexer))


def serve(multiplexer: LogMultiplexer, stdin: TextIO) -> None:
    try:
        while not multiplexer.stop_requested:
            line = stdin.readline()
            if not line:
                break
            result = multiplexer.process_line(line)
            if result is not None and not result.ok:
                logger.error(f"Couldn't write to log {result.path}: {result.error}")
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        multiplexer.shutdown()


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
        setup_logging(settings.LOG_LEVEL)
        store = build_store(settings)
        if settings.USER or settings.GROUP or settings.CHROOT:
            drop_privileges(settings.USER, settings.GROUP, settings.CHROOT)
        if not settings.BASE_DIR.is_dir():
            raise ConfigurationError(f"Log path does not exist: {settings.BASE_DIR}.")
    except VhostlogError as e:
        print(f"vhostlog: {e}", file=sys.stderr)
        return e.exit_code

    multiplexer = LogMultiplexer.from_settings(settings, store=store)
    install_signal_handlers(multiplexer)
    if stdin is None:
        stdin = open_stdin(sys.stdin.buffer)
    serve(multiplexer, stdin)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
