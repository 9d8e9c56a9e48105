"""Local stack session with a single teardown.

The session owns the Anvil process and the MEE node containers.
:py:meth:`StackSession.close` releases both exactly once, no matter
whether we get there through a normal exit, a termination signal,
an uncaught exception or the ``with`` block.

Example::

    session = StackSession(deployment)
    session.install_process_hooks()
    with session:
        session.anvil = launch_anvil(fork_url)
        deployment.up()
        ...
"""

import atexit
import logging
import signal
import sys
import threading
from types import TracebackType
from typing import Callable

from mee_harness.stack.anvil import AnvilLaunch
from mee_harness.stack.commands import kill_processes_matching
from mee_harness.stack.mee_node import MeeNodeDeployment

logger = logging.getLogger(__name__)

#: Process name pattern of stray forks we kill on teardown
STRAY_PROCESS_PATTERN = "anvil"


class StackSession:
    """Owns the running stack and tears it down once.

    :param deployment:
        MEE node checkout, ``None`` if we do not run the node

    :param exit:
        Process exit function used by the signal handlers, for tests
    """

    def __init__(
        self,
        deployment: MeeNodeDeployment | None = None,
        exit: Callable[[int], None] = sys.exit,
        stray_process_pattern: str | None = STRAY_PROCESS_PATTERN,
    ):
        self.deployment = deployment
        self.anvil: AnvilLaunch | None = None
        self.stray_process_pattern = stray_process_pattern
        self._exit = exit
        # close() may be re-entered from a signal handler
        self._lock = threading.RLock()
        self._closed = False
        self._hooks_installed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Stop Anvil, tear down containers and kill stray forks.

        Safe to call many times, only the first call does anything.
        Errors are logged, never raised.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        logger.info("🧹  Cleaning up…")

        steps = []
        if self.anvil is not None:
            steps.append(("stop Anvil", self.anvil.close))
        if self.deployment is not None:
            steps.append(("compose down", self.deployment.down))
        if self.stray_process_pattern:
            steps.append(("kill stray processes", lambda: kill_processes_matching(self.stray_process_pattern)))

        # A failed step must not keep the others from running
        for description, step in steps:
            try:
                step()
            except Exception as e:
                logger.error("Cleanup error in %s: %s", description, e, exc_info=True)

    def __enter__(self) -> "StackSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _on_signal(self, signum, frame):
        logger.info("Received signal %s", signal.Signals(signum).name)
        self.close()
        self._exit(0)

    def _on_uncaught(self, exc_type, exc, tb):
        """Log and clean up, the interpreter then exits with status 1."""
        logger.critical("💥 Uncaught exception: %s", exc, exc_info=(exc_type, exc, tb))
        self.close()

    def install_process_hooks(self):
        """Run :py:meth:`close` on exit, SIGINT, SIGTERM and uncaught exceptions.

        Installs the hooks only once per session.
        """
        if self._hooks_installed:
            return
        self._hooks_installed = True

        atexit.register(self.close)
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._on_signal)
        sys.excepthook = self._on_uncaught
