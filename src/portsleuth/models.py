"""Data models for portsleuth."""

from collections.abc import Iterator
from dataclasses import dataclass

# Owner pid of a connection whose socket could not be matched to a process.
UNKNOWN_OWNER = -1


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state."""

    pid: int
    ppid: int
    name: str
    cmdline: str
    username: str
    uid: int  # -1 when the kernel did not report it
    state: str  # 'R', 'S', 'T', 'Z', 'I', 'D', '?'...
    vsz_kb: int
    rss_kb: int
    start_time: int  # Seconds since the epoch, 0 if unknown


@dataclass(slots=True, frozen=True)
class ConnectionRecord:
    """One TCP connection reported by the kernel, joined to its owner."""

    protocol: str  # 'TCP' or 'TCP6'
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: str
    pid: int = UNKNOWN_OWNER

    @property
    def has_owner(self) -> bool:
        """Whether the owning process was resolved."""
        return self.pid != UNKNOWN_OWNER


@dataclass(slots=True, frozen=True)
class AncestryChain:
    """
    A process followed by its successive parents.

    ``processes[0]`` is the queried process and ``processes[-1]`` the
    furthest ancestor that could be resolved.
    """

    processes: tuple[ProcessSnapshot, ...]

    def __len__(self) -> int:
        return len(self.processes)

    def __iter__(self) -> Iterator[ProcessSnapshot]:
        return iter(self.processes)

    def __getitem__(self, index: int) -> ProcessSnapshot:
        return self.processes[index]

    @property
    def leaf(self) -> ProcessSnapshot:
        """The queried process."""
        return self.processes[0]

    @property
    def root(self) -> ProcessSnapshot:
        """The furthest ancestor that could be resolved."""
        return self.processes[-1]

    @property
    def pids(self) -> list[int]:
        """Pids of the chain, queried process first."""
        return [proc.pid for proc in self.processes]


@dataclass(slots=True, frozen=True)
class EnvironmentSet:
    """Raw ``KEY=VALUE`` strings in the order the kernel returned them."""

    entries: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def pairs(self) -> list[tuple[str, str]]:
        """Split every entry on its first '='. Duplicates are kept."""
        result = []
        for entry in self.entries:
            key, _, value = entry.partition("=")
            result.append((key, value))
        return result
