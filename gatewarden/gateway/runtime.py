"""Gateway process lifecycle: PID file, deploys, schedule hot reload."""

import asyncio
import inspect
import os
import signal
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from gatewarden.deploy.coordinator import DeploymentCoordinator
from gatewarden.deploy.request import take_deploy_request
from gatewarden.deploy.types import DeployResult
from gatewarden.gateway.inflight import InFlightTracker
from gatewarden.schedule.notify import read_pid, resolve_signal
from gatewarden.schedule.store import ScheduleStore
from gatewarden.schedule.types import ScheduleStoreData
from gatewarden.utils.helpers import atomic_write_text

ReloadCallback = Callable[[ScheduleStoreData], Any]


def write_pid_file(path: Path, pid: int | None = None) -> int:
    """Record our PID so schedule mutators can signal us."""
    pid = pid or os.getpid()
    atomic_write_text(Path(path), str(pid))
    logger.info(f"Wrote PID file {path} ({pid})")
    return pid


def install_signal_handler(
    loop: asyncio.AbstractEventLoop,
    callback: Callable[[], Any],
    signal_name: str,
    purpose: str,
) -> signal.Signals | None:
    """Run ``callback`` on ``loop`` whenever ``signal_name`` arrives (None if unavailable)."""
    sig = resolve_signal(signal_name)
    if sig is None:
        logger.warning(f"Signal {signal_name} unavailable; cannot {purpose}")
        return None
    try:
        loop.add_signal_handler(sig, callback)
    except (NotImplementedError, RuntimeError) as e:
        logger.warning(f"Could not install {sig.name} handler: {e}")
        return None
    logger.info(f"Listening for {sig.name} to {purpose}")
    return sig


def install_reload_handler(
    loop: asyncio.AbstractEventLoop,
    callback: Callable[[], Any],
    signal_name: str = "SIGUSR2",
) -> signal.Signals | None:
    return install_signal_handler(loop, callback, signal_name, "reload schedules")


def remove_pid_file(path: Path, pid: int | None = None) -> bool:
    """Remove the PID file if it still names us (a newer process may own it)."""
    pid = pid or os.getpid()
    if read_pid(path) != pid:
        return False
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    logger.info(f"Removed PID file {path}")
    return True


class GatewayRuntime:
    """
    Wires the resilience core into a running gateway.

    startup():     write PID file, roll back a crash-looping deploy, listen for
                   the reload and deploy-request signals.
    mark_ready():  confirm a just-finished deploy once the gateway serves.
    shutdown():    stop listening, drop the PID file.

    The reload callback receives a fresh store snapshot. It must re-register
    schedules without interrupting executions already in progress.

    Deploys always run here, never in the requesting process: the drain
    waits on this process's in-flight tracker and only this process writes
    the deploy state file.
    """

    def __init__(
        self,
        config,
        coordinator: DeploymentCoordinator | None = None,
        store: ScheduleStore | None = None,
        on_reload: ReloadCallback | None = None,
    ):
        self.config = config
        self.coordinator = coordinator or DeploymentCoordinator.from_config(config)
        self.store = store or ScheduleStore.from_config(config, notify=False)
        self.on_reload = on_reload
        self.inflight = InFlightTracker(is_draining=self.coordinator.is_deploy_pending)
        self.pid_path = config.pid_path
        self.deploy_request_path = config.deploy_request_path
        self.reload_count = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[signal.Signals] = []
        self._reload_task: asyncio.Task | None = None
        self._reload_again = False
        self._deploy_task: asyncio.Task | None = None

    async def startup(self) -> bool:
        """
        Returns False if a rollback was performed; the caller should exit so
        the process manager restarts into the restored build.
        """
        write_pid_file(self.pid_path)

        if await self.coordinator.check_rollback_needed():
            logger.warning("Rollback performed; exiting for restart with rolled-back code")
            return False

        self._loop = asyncio.get_running_loop()
        handlers = [
            install_reload_handler(
                self._loop, self.request_reload, self.config.schedule.reload_signal
            ),
            install_signal_handler(
                self._loop,
                self.request_deploy,
                self.config.deploy.request_signal,
                "run requested deploys",
            ),
        ]
        self._signals = [sig for sig in handlers if sig is not None]
        return True

    def mark_ready(self) -> bool:
        return self.coordinator.check_post_deploy_health()

    async def deploy(self, initiated_by: str) -> DeployResult:
        return await self.coordinator.execute_deploy(initiated_by, self.inflight.count)

    def shutdown(self) -> None:
        if self._loop is not None:
            for sig in self._signals:
                try:
                    self._loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass
            self._signals = []
        remove_pid_file(self.pid_path)

    # ========== Deploy requests ==========

    def request_deploy(self) -> None:
        """Signal-safe entry point: run the deploy waiting in the request file."""
        if self._deploy_task is not None and not self._deploy_task.done():
            request = take_deploy_request(self.deploy_request_path)
            if request is not None:
                logger.warning(f"Deploy already running; ignoring request from {request.initiated_by}")
            return
        loop = self._loop or asyncio.get_running_loop()
        self._deploy_task = loop.create_task(self._run_requested_deploy())

    async def _run_requested_deploy(self) -> DeployResult | None:
        request = take_deploy_request(self.deploy_request_path)
        if request is None:
            logger.warning(f"Deploy signal received but no request in {self.deploy_request_path}")
            return None
        logger.info(f"Deploy requested by {request.initiated_by}")
        try:
            result = await self.deploy(request.initiated_by)
        except Exception as e:
            logger.error(f"Requested deploy crashed: {e}")
            return None
        if result.success:
            logger.info(f"Requested deploy: {result.message}")
        else:
            logger.error(f"Requested deploy failed ({result.phase}): {result.message}")
        return result

    # ========== Hot reload ==========

    def request_reload(self) -> None:
        """Signal-safe entry point: schedule a reload, coalescing bursts."""
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_again = True
            return
        loop = self._loop or asyncio.get_running_loop()
        self._reload_task = loop.create_task(self._reload())

    async def _reload(self) -> None:
        while True:
            self._reload_again = False
            try:
                data = await asyncio.to_thread(self.store.load)
                self.reload_count += 1
                logger.info(f"Schedules reloaded from disk ({len(data.schedules)} total)")
                if self.on_reload is not None:
                    result = self.on_reload(data)
                    if inspect.isawaitable(result):
                        await result
            except Exception as e:
                logger.error(f"Schedule reload failed: {e}")
            if not self._reload_again:
                return
