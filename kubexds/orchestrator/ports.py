"""Host port allocation."""

import socket
from typing import Callable, Collection, Optional

from ..errors import PortExhausted

DEFAULT_PROBE_WINDOW = 10


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """True if nothing is listening on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(
    preferred: int,
    window: int = DEFAULT_PROBE_WINDOW,
    host: str = "127.0.0.1",
    reserved: Collection[int] = (),
    is_free: Callable[[int, str], bool] = is_port_free,
    service: Optional[str] = None,
) -> int:
    """First free port in ``[preferred, preferred + window)``, probing ascending.

    Ports in ``reserved`` are already promised to another service and are
    skipped even if currently unbound.
    """
    for port in range(preferred, min(preferred + window, 65536)):
        if port in reserved:
            continue
        if is_free(port, host):
            return port
    raise PortExhausted(
        f"no free port in [{preferred}, {preferred + window})", service
    )
