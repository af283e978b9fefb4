"""
Free TCP port discovery for running webhook servers in parallel tests.
"""

import logging
import socket

from k3s_envtest.errors import ConfigurationError

logger = logging.getLogger(__name__)


def find_available_port(host: str = "") -> int:
    """Return a port the OS reports as free on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def find_available_port_in_range(low: int, high: int, host: str = "") -> int:
    """
    Return the first free port in ``[low, high]``.

    The port is only known to be free at the time of the check.

    Raises:
        ConfigurationError: If the range is invalid or no port in it is free
    """
    if low < 1 or high > 65535 or low > high:
        raise ConfigurationError(f"invalid port range {low}-{high}")

    for port in range(low, high + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port

    raise ConfigurationError(
        f"no available port in range {low}-{high}",
        user_action="Free a port in the range or widen it",
    )
