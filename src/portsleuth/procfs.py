"""Process introspection through the Linux /proc filesystem."""

import os
import pwd
from pathlib import Path

from portsleuth.errors import MalformedData, NotFound, PermissionDenied, Unavailable
from portsleuth.logs import get_logger
from portsleuth.models import EnvironmentSet, ProcessSnapshot

logger = get_logger(__name__)

DEFAULT_PROC_ROOT = Path("/proc")

# Index of starttime in /proc/<pid>/stat once pid and comm are removed.
# Field 22 of proc(5): fields 3.. start at index 0.
_STARTTIME_INDEX = 22 - 3


def parse_stat(text: str) -> tuple[str, str, int, int]:
    """
    Parse the single line of /proc/<pid>/stat.

    The command name is wrapped in parentheses and may itself contain
    spaces or ')' characters, so it ends at the *last* closing parenthesis.

    Returns:
        (name, state, ppid, start_ticks)
    """
    open_paren = text.find("(")
    close_paren = text.rfind(")")
    if open_paren < 0 or close_paren < open_paren:
        raise MalformedData("stat line has no '(comm)' field")

    name = text[open_paren + 1 : close_paren]
    fields = text[close_paren + 1 :].split()
    if len(fields) <= _STARTTIME_INDEX:
        raise MalformedData(f"stat line has {len(fields) + 2} fields")

    state = fields[0]
    if len(state) != 1:
        raise MalformedData(f"bad process state {state!r}")
    try:
        ppid = int(fields[1])
        start_ticks = int(fields[_STARTTIME_INDEX])
    except ValueError as exc:
        raise MalformedData(str(exc)) from exc
    return name, state, ppid, start_ticks


def parse_status(text: str) -> tuple[int, int, int]:
    """
    Pull the real uid and memory sizes out of /proc/<pid>/status.

    Fields the kernel omits (VmSize/VmRSS for kernel threads) are left at
    their defaults.

    Returns:
        (uid, vsz_kb, rss_kb) with uid -1 when absent.
    """
    uid, vsz_kb, rss_kb = -1, 0, 0
    for line in text.splitlines():
        label, _, rest = line.partition(":")
        values = rest.split()
        if not values:
            continue
        try:
            if label == "Uid":
                uid = int(values[0])
            elif label == "VmSize":
                vsz_kb = int(values[0])
            elif label == "VmRSS":
                rss_kb = int(values[0])
        except ValueError:
            logger.debug("unparseable status field", label=label, value=values[0])
    return uid, vsz_kb, rss_kb


def parse_cmdline(raw: bytes) -> str:
    """Join the NUL-separated arguments of /proc/<pid>/cmdline with spaces."""
    return raw.replace(b"\x00", b" ").decode("utf-8", errors="replace").rstrip(" ")


def parse_boot_time(text: str) -> int:
    """Return the ``btime`` value of /proc/stat, or 0 when absent."""
    for line in text.splitlines():
        if line.startswith("btime "):
            try:
                return int(line.split()[1])
            except (IndexError, ValueError):
                return 0
    return 0


def username_for_uid(uid: int) -> str:
    """Look up a user name, falling back to the numeric uid."""
    if uid < 0:
        return ""
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


class ProcfsProcessProvider:
    """
    Reads process snapshots from /proc.

    Only ``stat`` is mandatory. ``status`` and ``cmdline`` are optional:
    when they cannot be read the snapshot keeps its default uid, memory
    and command line rather than failing.
    """

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT, clock_ticks: int | None = None) -> None:
        """
        Initialize the provider.

        Args:
            proc_root: Mount point of procfs.
            clock_ticks: Kernel clock ticks per second. Defaults to SC_CLK_TCK.
        """
        self._proc_root = Path(proc_root)
        self._clock_ticks = clock_ticks if clock_ticks is not None else os.sysconf("SC_CLK_TCK")
        self._boot_time: int | None = None

    @property
    def proc_root(self) -> Path:
        """Mount point of procfs."""
        return self._proc_root

    @property
    def boot_time(self) -> int:
        """System boot time in seconds since the epoch (0 if unknown)."""
        if self._boot_time is None:
            try:
                text = (self._proc_root / "stat").read_text(encoding="utf-8", errors="replace")
            except OSError:
                logger.debug("boot time unavailable", path=str(self._proc_root / "stat"))
                text = ""
            self._boot_time = parse_boot_time(text)
        return self._boot_time

    def pids(self) -> list[int]:
        """List the numerically named entries of the proc root."""
        try:
            names = os.listdir(self._proc_root)
        except OSError as exc:
            raise Unavailable(f"cannot list {self._proc_root}: {exc}") from exc
        return [int(name) for name in names if name.isdigit()]

    def get(self, pid: int) -> ProcessSnapshot:
        """Return a fresh snapshot of ``pid``, raising NotFound if it is gone."""
        proc_dir = self._proc_root / str(pid)

        try:
            stat_text = (proc_dir / "stat").read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise NotFound(f"process {pid} not found", pid=pid) from exc
        try:
            name, state, ppid, start_ticks = parse_stat(stat_text)
        except MalformedData as exc:
            raise NotFound(f"process {pid} has an unreadable stat record: {exc}", pid=pid) from exc

        start_time = 0
        if self._clock_ticks > 0 and self.boot_time > 0:
            start_time = self.boot_time + start_ticks // self._clock_ticks

        try:
            status_text = (proc_dir / "status").read_text(encoding="utf-8", errors="replace")
        except OSError:
            logger.debug("status unavailable", pid=pid)
            status_text = ""
        uid, vsz_kb, rss_kb = parse_status(status_text)

        try:
            cmdline = parse_cmdline((proc_dir / "cmdline").read_bytes())
        except OSError:
            logger.debug("cmdline unavailable", pid=pid)
            cmdline = ""

        return ProcessSnapshot(
            pid=pid,
            ppid=ppid,
            name=name,
            cmdline=cmdline,
            username=username_for_uid(uid),
            uid=uid,
            state=state,
            vsz_kb=vsz_kb,
            rss_kb=rss_kb,
            start_time=start_time,
        )


def parse_environ(raw: bytes) -> list[str]:
    """Split a NUL-separated environment block, dropping empty fragments and empty keys."""
    entries = []
    for chunk in raw.split(b"\x00"):
        if not chunk:
            continue
        entry = chunk.decode("utf-8", errors="replace")
        if entry.startswith("="):
            logger.debug("dropping environment entry without a key", entry=entry)
            continue
        entries.append(entry)
    return entries


class ProcfsEnvironmentReader:
    """Reads /proc/<pid>/environ."""

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT) -> None:
        self._proc_root = Path(proc_root)

    def read(self, pid: int) -> EnvironmentSet:
        """Environment strings of ``pid``."""
        path = self._proc_root / str(pid) / "environ"
        try:
            raw = path.read_bytes()
        except PermissionError as exc:
            raise PermissionDenied(f"not allowed to read the environment of process {pid}", pid=pid) from exc
        except OSError as exc:
            raise NotFound(f"process {pid} not found", pid=pid) from exc
        return EnvironmentSet(tuple(parse_environ(raw)))
