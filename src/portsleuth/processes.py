"""Process enumeration and ancestry walks on top of a ProcessInfoProvider."""

from typing import Protocol

from portsleuth.errors import NotFound
from portsleuth.logs import get_logger
from portsleuth.models import AncestryChain, ProcessSnapshot

logger = get_logger(__name__)


class ProcessInfoProvider(Protocol):
    """What the per-OS providers in procfs and darwin implement."""

    def pids(self) -> list[int]: ...

    def get(self, pid: int) -> ProcessSnapshot: ...


class ProcessEnumerator:
    """Lists every running process."""

    def __init__(self, provider: ProcessInfoProvider) -> None:
        self._provider = provider

    def all(self) -> list[ProcessSnapshot]:
        """
        Snapshot all processes in enumeration order.

        Processes that exit between the listing and the query are skipped.
        """
        processes = []
        for pid in self._provider.pids():
            try:
                processes.append(self._provider.get(pid))
            except NotFound:
                logger.debug("process vanished during enumeration", pid=pid)
        return processes


class AncestryWalker:
    """Follows parent pointers from a process up to the root."""

    def __init__(self, provider: ProcessInfoProvider) -> None:
        self._provider = provider

    def walk(self, pid: int) -> AncestryChain:
        """
        Build the chain of ``pid`` and its ancestors.

        Raises NotFound only when ``pid`` itself cannot be resolved. The walk
        stops at a non-positive or self-referencing parent, at a parent that
        vanished, or at a pid already in the chain (reparenting races can
        briefly produce a loop), so it takes at most one step per distinct
        process.
        """
        current = self._provider.get(pid)
        chain = [current]
        seen = {current.pid}

        while True:
            ppid = current.ppid
            if ppid <= 0 or ppid == current.pid:
                break
            if ppid in seen:
                logger.debug("ancestry loop detected", pid=current.pid, ppid=ppid)
                break
            try:
                current = self._provider.get(ppid)
            except NotFound:
                logger.debug("ancestor vanished", pid=ppid)
                break
            chain.append(current)
            seen.add(current.pid)

        return AncestryChain(tuple(chain))
