from __future__ import annotations

import argparse
import time
from typing import Optional

import requests

from .config import MODULE_NAME, load_config
from .dispatch import Dispatcher
from .errors import ConfigLoadError
from .logger import Logger, LogDirError
from .long_running import LongRunningManager
from .pictures import FILE_ADD, FILE_DEL, scan_directory
from .server import EXIT_OK, EXIT_STARTUP, run_server

KILL_TIMEOUT = 5
KILL_RC = 0
KILL_PAUSE = 1.0

SCAN_MARKS = {FILE_ADD: "+", FILE_DEL: "-"}


def kill_server(port: int) -> bool:
    """Ask a server already listening on `port` to exit."""
    url = f"http://localhost:{port}/exit?rc={KILL_RC}"
    try:
        r = requests.get(url, timeout=KILL_TIMEOUT)
    except requests.RequestException as e:
        print(f"Kill: no server responded on port {port}. {e}")
        return False
    print(f"Kill: {url} -> {r.status_code}")
    return r.status_code == 202


def scan(dir_path: str, extensions: list[str], commit: bool, files_filter: Optional[list[str]] = None) -> int:
    try:
        data = scan_directory(dir_path, extensions, files_filter)
    except (OSError, ValueError) as e:
        print(f"Scan failed: {e}")
        return EXIT_STARTUP
    data.list_new_add_del(lambda kind, path: print(f"{SCAN_MARKS.get(kind, ' ')}{path}"))
    if data.new_state is None:
        print(f"Scan: first run. {data.old_state_count} file(s) recorded in {data.data_file}")
        return EXIT_OK
    print(f"Scan: was {data.old_state_count} now {data.new_state_count}. "
          f"Added:{data.need_to_create_count} Deleted:{data.need_to_delete_count}")
    if commit:
        data.commit()
        print(f"Scan: committed to {data.data_file}")
    return EXIT_OK


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(
        prog=MODULE_NAME,
        description="Serve per-user file locations, configured execs and static pages over HTTP.",
    )
    ap.add_argument("config", nargs="?", default=None, help=f"Config file (.json added). Default: {MODULE_NAME}.")
    ap.add_argument("--config", dest="config_opt", default=None, help="Same as the positional config.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Print the resolved config and log more detail.")
    ap.add_argument("-k", "--kill", action="store_true", help="Stop a server running on the configured port first.")
    ap.add_argument("--create", action="store_true", help="Create missing user location directories and exit.")
    ap.add_argument("--add", metavar="USER", default="", help="Add a user with default locations and exit.")
    ap.add_argument("--port", type=int, default=0, help="Override the configured port.")
    ap.add_argument("--scan", metavar="DIR", default="", help="Compare DIR with its saved scan data and exit.")
    ap.add_argument("--ext", action="append", default=[], help="Extension kept by --scan (repeatable).")
    ap.add_argument("--commit", action="store_true", help="With --scan, save the new state.")
    args = ap.parse_args(argv)

    config_name = args.config_opt or args.config
    if args.scan:
        # FilesFilter applies only when a config is named
        files_filter = None
        if config_name:
            try:
                config, _ = load_config(config_name, MODULE_NAME)
            except ConfigLoadError as e:
                print(f"Config load failed: {e.log}")
                return EXIT_STARTUP
            files_filter = config.files_filter
        return scan(args.scan, args.ext, args.commit, files_filter)

    config_name = config_name or MODULE_NAME
    try:
        config, errors = load_config(config_name, MODULE_NAME, create_dirs=args.create, verbose=args.verbose)
    except ConfigLoadError as e:
        print(f"Config load failed: {e.log}")
        return EXIT_STARTUP

    if args.add:
        try:
            config.add_user(args.add)
            config.save()
        except (ValueError, OSError) as e:
            print(f"Add user failed: {e}")
            return EXIT_STARTUP
        print(f"User '{args.add}' added to {config.config_name}")
        return EXIT_OK

    if args.create:
        for line in config.locations_created:
            print(line)
        if len(errors):
            print(errors)
            return EXIT_STARTUP
        return EXIT_OK

    if len(errors):
        print(errors)
        return EXIT_STARTUP

    if args.port:
        config.data.port = args.port

    if args.verbose:
        print(config.as_json())

    ld = config.log_data
    try:
        logger = Logger(config.log_data_path(), ld.file_name_mask, ld.monitor_seconds, ld.console_out, args.verbose)
    except LogDirError as e:
        print(f"Logger: {e}")
        return EXIT_STARTUP

    try:
        lrm = LongRunningManager(config.exec_path, log=logger.log)
    except NotADirectoryError as e:
        print(str(e))
        return EXIT_STARTUP

    if args.kill:
        if kill_server(config.port):
            time.sleep(KILL_PAUSE)

    logger.log(f"Config: {config.config_name}")
    logger.log(f"LongRunningManager: {lrm}")
    return run_server(Dispatcher(config, logger, lrm))


if __name__ == "__main__":
    raise SystemExit(main())
