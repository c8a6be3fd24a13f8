"""Gateway process glue."""

from gatewarden.gateway.inflight import InFlightTracker
from gatewarden.gateway.runtime import (
    GatewayRuntime,
    install_reload_handler,
    install_signal_handler,
    remove_pid_file,
    write_pid_file,
)

__all__ = [
    "InFlightTracker",
    "GatewayRuntime",
    "install_reload_handler",
    "install_signal_handler",
    "write_pid_file",
    "remove_pid_file",
]
