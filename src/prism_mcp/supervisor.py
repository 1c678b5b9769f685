"""
Child-process supervisor used by ``prism connect``.

Runs the server as a child with inherited stdio, so the MCP client talks
to it directly, and forwards SIGINT / SIGTERM to it.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from types import FrameType

_logger = logging.getLogger("prism.supervisor")

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ProcessSupervisor:
    """Spawn one child process, relay termination signals, report its exit code."""

    def __init__(self, argv: Sequence[str], env: Mapping[str, str] | None = None) -> None:
        if not argv:
            raise ValueError("argv must name a program to run")
        self.argv = list(argv)
        self.env = dict(os.environ if env is None else env)
        self.process: subprocess.Popen[bytes] | None = None

    def _forward(self, signum: int, frame: FrameType | None) -> None:
        if self.process is not None and self.process.poll() is None:
            _logger.debug("Forwarding signal %d to child %d", signum, self.process.pid)
            self.process.send_signal(signum)

    def run(self) -> int:
        """Run the child to completion and return its exit code."""
        _logger.info("Starting %s", " ".join(self.argv))
        # Install before spawning; the child must never outlive a default handler
        original = {sig: signal.getsignal(sig) for sig in FORWARDED_SIGNALS}
        for sig in FORWARDED_SIGNALS:
            signal.signal(sig, self._forward)
        try:
            try:
                self.process = subprocess.Popen(self.argv, env=self.env)
            except OSError as e:
                _logger.error("Failed to start %s: %s", self.argv[0], e)
                return 127
            code = self.process.wait()
        finally:
            for sig, handler in original.items():
                signal.signal(sig, handler)

        _logger.info("Child exited with code %d", code)
        return code


def serve_command(*extra: str) -> list[str]:
    """The argv that runs ``prism serve`` with the current interpreter."""
    return [sys.executable, "-m", "prism_mcp", "serve", *extra]
