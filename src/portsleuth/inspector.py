"""Entry point of the introspection layer used by the CLI and the interactive app."""

import signal
import sys
from pathlib import Path

import psutil

from portsleuth.darwin import DarwinEnvironmentReader, DarwinProcessProvider
from portsleuth.errors import NotFound, PermissionDenied, Unavailable
from portsleuth.logs import get_logger
from portsleuth.models import AncestryChain, ConnectionRecord, EnvironmentSet, ProcessSnapshot
from portsleuth.processes import AncestryWalker, ProcessEnumerator
from portsleuth.procfs import DEFAULT_PROC_ROOT, ProcfsEnvironmentReader, ProcfsProcessProvider
from portsleuth.sockets import LsofPortResolver, ProcfsPortResolver

logger = get_logger(__name__)


class Inspector:
    """
    Answers "who owns this port?" and "what is this process?".

    Every call returns freshly built, immutable results; nothing is cached
    between calls.
    """

    def __init__(
        self,
        platform: str | None = None,
        proc_root: Path = DEFAULT_PROC_ROOT,
        lsof_path: str = "lsof",
        lsof_timeout: float = 10.0,
    ) -> None:
        """
        Initialize the Inspector.

        Args:
            platform: ``sys.platform`` style name. Defaults to the running OS.
            proc_root: procfs mount point (Linux).
            lsof_path: lsof executable used for port lookups (macOS).
            lsof_timeout: Seconds to wait for lsof.
        """
        self._platform = platform or sys.platform
        if self._platform.startswith("linux"):
            self._provider = ProcfsProcessProvider(proc_root)
            self._environment = ProcfsEnvironmentReader(proc_root)
            self._ports = ProcfsPortResolver(proc_root)
        elif self._platform == "darwin":
            self._provider = DarwinProcessProvider()
            self._environment = DarwinEnvironmentReader()
            self._ports = LsofPortResolver(lsof_path, timeout=lsof_timeout)
        else:
            raise Unavailable(f"unsupported platform: {self._platform}")
        self._enumerator = ProcessEnumerator(self._provider)
        self._walker = AncestryWalker(self._provider)

    @property
    def platform(self) -> str:
        """Platform name the backend was chosen for."""
        return self._platform

    def resolve_port(self, port: int) -> list[ConnectionRecord]:
        """TCP connections whose local port is ``port``, joined to their owners."""
        return self._ports.resolve(port)

    def get_process(self, pid: int) -> ProcessSnapshot:
        """Fresh snapshot of ``pid``."""
        return self._provider.get(pid)

    def get_ancestry(self, pid: int) -> AncestryChain:
        """``pid`` followed by its parents up to the root."""
        return self._walker.walk(pid)

    def get_environment(self, pid: int) -> EnvironmentSet:
        """Environment strings of ``pid`` in kernel order."""
        return self._environment.read(pid)

    def list_all_processes(self) -> list[ProcessSnapshot]:
        """Snapshots of every process that still exists when queried."""
        return self._enumerator.all()

    def terminate(self, pid: int, sig: int = signal.SIGTERM) -> None:
        """
        Deliver ``sig`` to ``pid``.

        Whether to terminate is the caller's decision; this only delivers
        the signal and reports why delivery failed. Pid 0 (the kernel or
        the caller's process group) is refused, negative pids are never
        found.
        """
        if pid == 0:
            raise PermissionDenied("refusing to signal process 0", pid=pid)
        if pid < 0:
            raise NotFound(f"process {pid} not found", pid=pid)
        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess as exc:
            raise NotFound(f"process {pid} no longer exists", pid=pid) from exc
        except psutil.AccessDenied as exc:
            raise PermissionDenied(f"not allowed to signal process {pid}", pid=pid) from exc
        logger.info("signal delivered", pid=pid, signal=int(sig))

    def is_running(self, pid: int) -> bool:
        """Whether ``pid`` still exists and is not a zombie."""
        if pid <= 0:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True
