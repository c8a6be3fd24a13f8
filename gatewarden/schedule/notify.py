"""Hot-reload notification from schedule mutators to the running gateway.

Fire-and-forget, at-most-once: a PID is read from the gateway's PID file and
a signal is delivered. No acknowledgment, no retry. A gateway that is not
running is normal, so every failure is swallowed.
"""

import os
import signal
from pathlib import Path

from loguru import logger


def resolve_signal(name: str) -> signal.Signals | None:
    """Map a signal name like ``"SIGUSR2"`` to the platform constant (None if absent)."""
    sig = getattr(signal, name.upper(), None)
    return sig if isinstance(sig, signal.Signals) else None


def read_pid(pid_file: Path) -> int | None:
    try:
        pid = int(Path(pid_file).read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None


def notify_gateway(pid_file: Path, signal_name: str = "SIGUSR2") -> bool:
    """Ask the gateway to re-read the schedule store. Returns True if a signal was sent."""
    sig = resolve_signal(signal_name)
    if sig is None:
        logger.debug(f"Reload signal {signal_name} not available on this platform")
        return False

    pid = read_pid(pid_file)
    if pid is None:
        logger.debug(f"No gateway PID in {pid_file}; skipping reload notification")
        return False

    try:
        os.kill(pid, sig)
    except OSError as e:
        logger.debug(f"Could not signal gateway (pid {pid}): {e}")
        return False

    logger.debug(f"Sent {sig.name} to gateway (pid {pid})")
    return True
