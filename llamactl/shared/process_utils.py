"""
OS-level helpers for locating and probing llama-server processes.
"""
import contextlib
import os
import subprocess
from typing import Optional

from llamactl.shared.logger import Logger

logger = Logger.get(__name__)


def is_process_alive(pid: int) -> bool:
    """
    Check if a process is alive.

    Args:
        pid: Process ID

    Returns:
        True if the process exists and is not a zombie child of ours
    """
    # Reap the process first if it is our exited child
    with contextlib.suppress(ChildProcessError, OSError):
        os.waitpid(pid, os.WNOHANG)
    try:
        # Signal 0 only checks that the process exists
        os.kill(pid, 0)
        return True
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False


def find_pid_by_port(port: Optional[int]) -> Optional[int]:
    """
    Find the PID of the process listening on a TCP port using lsof.

    Args:
        port: TCP port, or None

    Returns:
        The first listening PID, or None if lsof is unavailable, fails, or
        nothing is listening on the port.
    """
    if port is None:
        return None
    try:
        result = subprocess.run(
            ["lsof", "-t", "-i", f"TCP:{port}", "-sTCP:LISTEN"],
            check=False,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug(f"PID lookup for port {port} failed: {e}")
        return None

    for line in result.stdout.splitlines():
        line = line.strip()
        if line.isdigit():
            return int(line)
    return None


def read_pid_file(path: os.PathLike) -> Optional[int]:
    """
    Read a PID from a plain-text PID file.

    Returns:
        The PID, or None if the file is missing or does not contain an integer
    """
    try:
        with open(path, encoding="utf-8") as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return None
