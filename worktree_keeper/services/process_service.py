"""Dev server process detection and termination"""
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

import psutil

from worktree_keeper.exceptions import ExecutionError
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

DEV_SERVER_NAMES = re.compile(r"^(node|npm|pnpm|yarn|bun|next|next-server|vite|webpack|dev-server)$", re.IGNORECASE)
DEV_SERVER_COMMANDS = re.compile(
    r"(next dev|next-server|npm.*dev|pnpm.*dev|yarn.*dev|bun.*dev|vite|webpack.*serve|turbo.*dev|dev.*server)",
    re.IGNORECASE,
)


@dataclass
class ProcessInfo:
    """A process listening on a TCP port."""
    pid: int
    name: str
    command: str
    port: int
    looks_like_dev_server: bool


class ProcessLifecycle(ABC):
    """Finds and stops whatever is listening on a workspace's port."""

    @abstractmethod
    def detect_listener_on_port(self, port: int) -> Optional[ProcessInfo]:
        ...

    @abstractmethod
    def terminate(self, pid: int) -> None:
        ...

    @abstractmethod
    def verify_port_free(self, port: int) -> bool:
        ...


def is_dev_server_process(name: str, command: str) -> bool:
    """Heuristic: a known dev tool by name, or a dev-server looking command line.

    A bare ``node`` process only counts when its command line also looks like
    a dev server, so unrelated node services on the port are left alone.
    """
    if DEV_SERVER_COMMANDS.search(command or ""):
        return True
    if DEV_SERVER_NAMES.match(name or "") and name.lower() not in ("node", "bun"):
        return True
    return False


class ProcessManager(ProcessLifecycle):
    """psutil based process lifecycle."""

    def __init__(self, base_port: int = 3000, termination_timeout: float = 5.0,
                 poll_attempts: int = 10, poll_interval: float = 0.2):
        self.base_port = base_port
        self.termination_timeout = termination_timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval

    def calculate_port(self, number: int) -> int:
        """Dev server port for an issue or PR number."""
        return self.base_port + number

    def _listening_connections(self) -> Iterable[Tuple[Optional[int], Any]]:
        """(pid, connection) pairs for every inet socket we can see."""
        try:
            return [(conn.pid, conn) for conn in psutil.net_connections(kind="inet")]
        except psutil.AccessDenied:
            # macOS requires root for a system-wide listing; fall back to per-process
            logger.debug("System-wide connection listing denied, scanning processes")
            connections = []
            for proc in psutil.process_iter(["pid"]):
                try:
                    for conn in proc.net_connections(kind="inet"):
                        connections.append((proc.pid, conn))
                except (psutil.AccessDenied, psutil.NoSuchProcess, psutil.ZombieProcess):
                    continue
            return connections

    def detect_listener_on_port(self, port: int) -> Optional[ProcessInfo]:
        for pid, conn in self._listening_connections():
            if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
                continue
            if not pid:
                continue
            try:
                proc = psutil.Process(pid)
                name = proc.name()
                try:
                    command = " ".join(proc.cmdline())
                except (psutil.AccessDenied, psutil.ZombieProcess):
                    command = ""
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                name, command = "", ""

            info = ProcessInfo(
                pid=pid,
                name=name,
                command=command,
                port=port,
                looks_like_dev_server=is_dev_server_process(name, command),
            )
            logger.debug(f"Port {port} is held by {info}")
            return info
        return None

    def terminate(self, pid: int) -> None:
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                proc.wait(timeout=self.termination_timeout)
            except psutil.TimeoutExpired:
                logger.debug(f"Process {pid} ignored SIGTERM, killing it")
                proc.kill()
                proc.wait(timeout=self.termination_timeout)
        except psutil.NoSuchProcess:
            logger.debug(f"Process {pid} already exited")
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            raise ExecutionError("terminate_process", f"could not terminate process {pid}: {e}") from e
        logger.info(f"Terminated process {pid}")

    def verify_port_free(self, port: int) -> bool:
        for attempt in range(self.poll_attempts):
            if self.detect_listener_on_port(port) is None:
                return True
            if attempt < self.poll_attempts - 1:
                time.sleep(self.poll_interval)
        return False
