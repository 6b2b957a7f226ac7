"""
Backup daemon: single-instance start, interval loop and graceful shutdown.

Lifecycle:
1. start() ensures the destination exists and takes the instance lock
2. The loop is detached into its own session and runs a cycle every interval
3. SIGTERM/SIGHUP/SIGINT request a stop: the scheduler drains, one final
   cycle runs, the lock is released and the process exits with status 0
"""

import logging
import os
import signal
import threading
from typing import Optional

from backupd.backup.executor import BackupCycle, remove_stale_staging
from backupd.backup.storage import create_store
from backupd.models import CycleResult, DaemonHandle, DaemonState
from backupd.scheduler import CycleScheduler
from backupd.utils.lock import InstanceLock

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)

# Upper bound on how long a received stop signal waits to be noticed
STOP_POLL_SECONDS = 1.0


class DestinationError(Exception):
    """Raised when the backup destination cannot be created."""
    pass


class BackupDaemon:
    """
    Runs backup cycles for one destination until asked to stop.
    """

    def __init__(self, config, cycle: Optional[BackupCycle] = None):
        """
        Initialize the daemon.

        Args:
            config: DaemonConfig
            cycle: Cycle executor (default BackupCycle over the configured store)
        """
        self.config = config
        self.state = DaemonState.IDLE
        self.cycle = cycle or BackupCycle(
            config,
            create_store(config.store_backend, config.destination, config.compression_format)
        )
        self.scheduler = CycleScheduler(self.run_cycle, config.interval_seconds)
        self.final_result = None
        self._lock = InstanceLock(config.lock_path)
        self._stop_event = threading.Event()
        self._state_lock = threading.RLock()
        self._received_signals = []

    def ensure_destination(self):
        """
        Create the destination root if needed.

        Raises:
            DestinationError: If the directory cannot be created
        """
        try:
            os.makedirs(self.config.destination, exist_ok=True)
        except OSError as e:
            raise DestinationError(f"Failed to create backup directory {self.config.destination}: {e}")

    def acquire(self) -> bool:
        """
        Take the instance lock for this destination.

        Returns:
            True if no other instance is running, False otherwise

        Raises:
            DestinationError: If the destination cannot be created
        """
        self.ensure_destination()

        if self._lock.acquire():
            return True

        pid = self._lock.read_pid()
        logger.info(f"Backup process already running (pid {pid or 'unknown'}).")
        return False

    def start(self) -> Optional[DaemonHandle]:
        """
        Start the backup loop in a detached process unless one is running.

        Returns:
            DaemonHandle for the new loop, or None if another instance holds
            the destination

        Raises:
            DestinationError: If the destination cannot be created
        """
        if not self.acquire():
            return None

        pid = self._spawn()
        logger.info(f"Backup process started (pid {pid}).")
        return DaemonHandle(pid=pid, destination=self.config.destination, lock_path=self.config.lock_path)

    def run_foreground(self) -> Optional[int]:
        """
        Run the backup loop in the calling process.

        Returns:
            0 after a graceful stop, or None if another instance is running

        Raises:
            DestinationError: If the destination cannot be created
        """
        if not self.acquire():
            return None

        self.serve()
        return 0

    def serve(self):
        """Run the loop in this process while holding the instance lock."""
        with self._lock:
            self._lock.write_pid(os.getpid())
            remove_stale_staging(self.config.destination)
            self.install_signal_handlers()
            self.run_loop()

    def _spawn(self) -> int:
        """
        Fork the loop into a new session.

        The child inherits the instance lock and holds it until it exits;
        the parent only drops its own descriptor.
        """
        pid = os.fork()
        if pid > 0:
            self._lock.close()
            return pid

        exit_code = 1
        try:
            os.setsid()
            _redirect_stdio()
            self.serve()
            exit_code = 0
        except Exception:
            logger.exception("Backup process failed")
        finally:
            logging.shutdown()
            os._exit(exit_code)

    def install_signal_handlers(self):
        """Route the stop signals to handle_signal()."""
        for signum in STOP_SIGNALS:
            signal.signal(signum, self.handle_signal)

    def handle_signal(self, signum, frame):
        """
        Record a stop signal for the loop to act on.

        Runs between bytecodes of the main thread, which may be holding the
        locks request_stop() needs, so it only appends to a list.
        """
        self._received_signals.append(signum)

    def request_stop(self, signum=None):
        """
        Ask the loop to stop after one final cycle.

        Only the first request counts; later ones are ignored.
        """
        with self._state_lock:
            if self.state == DaemonState.SHUTTING_DOWN:
                logger.info("Shutdown already in progress, ignoring stop request")
                return

            reason = signal.Signals(signum).name if signum else 'request'
            logger.info(f"Stop requested ({reason})")
            self.state = DaemonState.SHUTTING_DOWN
            self._stop_event.set()

    def run_loop(self):
        """
        Run cycles on the interval until a stop is requested, then shut down.
        """
        with self._state_lock:
            if self.state == DaemonState.IDLE:
                self.state = DaemonState.RUNNING

        if not self.stop_requested:
            self.scheduler.start()
            while not self.stop_requested:
                self._stop_event.wait(STOP_POLL_SECONDS)

        if self._received_signals:
            self.request_stop(self._received_signals[0])

        self._shutdown()

    def _shutdown(self):
        """Drain the scheduler, then run exactly one final cycle."""
        self.scheduler.stop(wait=True)

        logger.info("Running final backup before shutdown")
        self.final_result = self.run_cycle()

        for signum in self._received_signals[1:]:
            logger.info(f"Ignored repeated stop request ({signal.Signals(signum).name})")
        logger.info("Backup process stopped.")

    def run_cycle(self) -> Optional[CycleResult]:
        """
        Run one backup cycle, logging rather than raising unexpected errors.
        """
        try:
            result = self.cycle.run()
        except Exception:
            logger.exception("Backup cycle failed unexpectedly")
            return None

        logger.info(f"Backup cycle {result.timestamp} finished with status: {result.status}")

        if self.scheduler.running and not self.stop_requested:
            next_run = self.scheduler.next_run_time()
            if next_run:
                logger.info(f"Next backup cycle at {next_run.strftime('%Y-%m-%d %H:%M:%S')}")
        return result

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set() or bool(self._received_signals)


def _redirect_stdio():
    """Point stdin, stdout and stderr at /dev/null."""
    devnull = os.open(os.devnull, os.O_RDWR)
    try:
        for fd in (0, 1, 2):
            os.dup2(devnull, fd)
    finally:
        if devnull > 2:
            os.close(devnull)
