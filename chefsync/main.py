"""Command-line entry point: logging setup and the run, status and init commands."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import tomli_w
from pydantic import ValidationError

from chefsync import __version__
from chefsync.config import Settings
from chefsync.exceptions import ExitCode, SyncError
from chefsync.services.resolve_service import ALL_COOKBOOKS
from chefsync.services.sync_service import SyncService

if TYPE_CHECKING:
    from chefsync.services.sync_service import StatusReport

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "chefsync.toml"
_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_SYSLOG_SOCKETS = ("/dev/log", "/var/run/syslog")


def _syslog_handler() -> logging.Handler:
    address: str | tuple[str, int] = ("localhost", logging.handlers.SYSLOG_UDP_PORT)
    for candidate in _SYSLOG_SOCKETS:
        if Path(candidate).exists():
            address = candidate
            break
    handler = logging.handlers.SysLogHandler(address=address)
    handler.setFormatter(logging.Formatter("chefsync[%(process)d]: %(levelname)s %(message)s"))
    return handler


def _configure_logging(
    *,
    verbose: bool = False,
    debug: bool = False,
    syslog: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure application logging.

    Nothing reaches stdout unless verbose or debug output was asked for;
    otherwise only warnings and errors go to stderr.
    """
    handlers: list[logging.Handler] = []
    if verbose or debug:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.DEBUG if debug else logging.INFO)
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.WARNING)
    handlers.append(console)

    if syslog:
        try:
            handlers.append(_syslog_handler())
        except OSError as exc:
            print(f"chefsync: syslog unavailable: {exc}", file=sys.stderr)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=handlers,
        force=True,
    )


def load_settings(config: str | None) -> Settings:
    """Load settings from ``config``, or from ./chefsync.toml if present, else the environment."""
    if config is not None:
        return Settings.from_file(Path(config))
    default = Path(DEFAULT_CONFIG_FILE)
    if default.exists():
        return Settings.from_file(default)
    return Settings()


def write_starter_config(path: Path) -> None:
    """Write a starter config, refusing to overwrite an existing file."""
    if path.exists():
        msg = f"{path} already exists"
        raise FileExistsError(msg)
    defaults = Settings(_env_file=None)  # type: ignore[call-arg]
    data = {
        "vcs": {
            "vcs_backend": defaults.vcs_backend,
            "repo_url": "https://svn.example.com/chef-repo/trunk",
            "working_copy": str(defaults.working_copy),
        },
        "paths": {
            "cookbook_paths": defaults.cookbook_paths,
            "role_path": defaults.role_path,
            "role_extensions": defaults.role_extensions,
        },
        "state": {
            "state_dir": str(defaults.state_dir),
            "lock_stale_after_seconds": defaults.lock_stale_after_seconds,
        },
        "knife": {"knife_command": defaults.knife_command},
        "logging": {"syslog": defaults.syslog},
    }
    path.write_text(tomli_w.dumps(data), encoding="utf-8")


def _print_status(report: StatusReport) -> None:
    change_set = report.change_set
    print("Sync Status:")
    print(f"  Checkpoint:      {report.checkpoint}")
    print(f"  Working copy at: {report.local_head}")
    print(f"  Latest upstream: {report.latest}")
    if change_set.cookbooks_to_upload is ALL_COOKBOOKS:
        print("    + all cookbooks (upload)")
    else:
        for name in change_set.cookbooks_to_upload:
            print(f"    + {name} (cookbook upload)")
    for name in change_set.cookbooks_to_delete:
        print(f"    - {name} (cookbook delete)")
    for name in change_set.roles_to_upload:
        print(f"    + {name} (role upload)")
    for name in change_set.roles_to_delete:
        print(f"    - {name} (role delete)")
    if change_set.is_empty:
        print("  Nothing to publish.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chefsync",
        description="Publish changed cookbooks and roles from version control to a Chef server",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", "-c", help=f"TOML config file (default: ./{DEFAULT_CONFIG_FILE} if present)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stdout")
    parser.add_argument("--debug", action="store_true", help="Log debug details to stdout")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Synchronize once (default)")
    subparsers.add_parser("status", help="Show what a run would publish")
    init = subparsers.add_parser("init", help="Write a starter config file")
    init.add_argument("path", nargs="?", default=DEFAULT_CONFIG_FILE)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        target = Path(args.path)
        try:
            write_starter_config(target)
        except FileExistsError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return ExitCode.CONFIG_ERROR
        print(f"Initialized config in {target}")
        return ExitCode.OK

    try:
        settings = load_settings(args.config)
    except (SyncError, ValidationError) as exc:
        _configure_logging(verbose=args.verbose, debug=args.debug)
        logger.error("Configuration error: %s", exc)
        return ExitCode.CONFIG_ERROR

    _configure_logging(
        verbose=args.verbose,
        debug=args.debug or settings.debug,
        syslog=settings.syslog,
        log_file=settings.log_file,
    )

    try:
        settings.validate_paths()
        service = SyncService.from_settings(settings)
        if args.command == "status":
            _print_status(service.status())
            return ExitCode.OK
        return service.run().exit_code
    except SyncError as exc:
        logger.error("%s", exc)
        if exc.output:
            logger.error("Command output:\n%s", exc.output)
        return int(exc.exit_code)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception:
        logger.exception("Unexpected error")
        return ExitCode.INTERNAL_ERROR


def cli_entry() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
