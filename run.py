#!/usr/bin/env python3
"""Backup daemon runner"""
import argparse
import sys

from backupd import create_daemon
from backupd.config import ConfigError
from backupd.daemon import DestinationError
from backupd.utils.lock import LockError


def main(argv=None):
    parser = argparse.ArgumentParser(description='Periodic backup daemon')
    parser.add_argument('--config', dest='config_name', default=None,
                        help='configuration profile (default: $BACKUPD_ENV or production)')
    parser.add_argument('--foreground', action='store_true',
                        help='run the loop in this process instead of detaching')
    args = parser.parse_args(argv)

    try:
        daemon = create_daemon(args.config_name, console=True)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"Cannot prepare backup directory: {e}", file=sys.stderr)
        return 1

    try:
        if args.foreground:
            daemon.run_foreground()
        else:
            handle = daemon.start()
            if handle is not None:
                print(f"Backup process started (pid {handle.pid}).")
            else:
                print("Backup process already running.")
    except (DestinationError, LockError) as e:
        print(str(e), file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
