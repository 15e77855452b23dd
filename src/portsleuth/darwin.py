"""Process introspection on macOS."""

import ctypes
import ctypes.util
import errno
import struct

import psutil

from portsleuth.errors import NotFound, PermissionDenied, Unavailable
from portsleuth.logs import get_logger
from portsleuth.models import EnvironmentSet, ProcessSnapshot
from portsleuth.procfs import username_for_uid

logger = get_logger(__name__)

# <sys/sysctl.h>
CTL_KERN = 1
KERN_ARGMAX = 8
KERN_PROCARGS2 = 49

STATUS_LETTERS = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_IDLE: "I",
}


def status_letter(status: str) -> str:
    """Map a psutil status constant onto the single-letter state vocabulary."""
    return STATUS_LETTERS.get(status, "?")


class DarwinProcessProvider:
    """
    Reads process snapshots through psutil.

    psutil answers from proc_pidinfo (BSD info and task info) and
    proc_pidpath. Task info is refused for other users' processes, so
    memory sizes degrade to 0 there.
    """

    def pids(self) -> list[int]:
        """Every pid psutil reports."""
        return psutil.pids()

    def get(self, pid: int) -> ProcessSnapshot:
        """Return a fresh snapshot of ``pid``, raising NotFound if it is gone."""
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                ppid = proc.ppid()
                name = proc.name()
                uid = proc.uids().real
                state = status_letter(proc.status())
                start_time = int(proc.create_time())
                vsz_kb, rss_kb = self._memory(proc)
                cmdline = self._path(proc)
        except psutil.NoSuchProcess as exc:
            raise NotFound(f"process {pid} not found", pid=pid) from exc
        except psutil.AccessDenied as exc:
            raise NotFound(f"process {pid} cannot be inspected", pid=pid) from exc

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

    @staticmethod
    def _memory(proc: psutil.Process) -> tuple[int, int]:
        try:
            mem = proc.memory_info()
        except (psutil.AccessDenied, psutil.ZombieProcess):
            logger.debug("task info refused", pid=proc.pid)
            return 0, 0
        return mem.vms // 1024, mem.rss // 1024

    @staticmethod
    def _path(proc: psutil.Process) -> str:
        try:
            return proc.exe()
        except (psutil.AccessDenied, psutil.ZombieProcess):
            logger.debug("executable path refused", pid=proc.pid)
            return ""


def parse_procargs2(buffer: bytes) -> list[str]:
    """
    Extract the environment from a KERN_PROCARGS2 buffer.

    Layout: native int argc, executable path + NUL, NUL padding, argc
    NUL-terminated arguments, then NUL-terminated environment strings up to
    an empty string or the end of the buffer. Only strings with a non-empty
    key before '=' are kept.
    """
    int_size = struct.calcsize("i")
    if len(buffer) < int_size:
        return []
    (argc,) = struct.unpack_from("i", buffer)
    end = len(buffer)

    # executable path
    pos = buffer.find(b"\x00", int_size)
    if pos < 0:
        return []
    pos += 1
    while pos < end and buffer[pos] == 0:
        pos += 1

    for _ in range(max(argc, 0)):
        if pos >= end:
            return []
        nul = buffer.find(b"\x00", pos)
        pos = end if nul < 0 else nul + 1

    entries = []
    while pos < end:
        nul = buffer.find(b"\x00", pos)
        if nul < 0:
            nul = end
        chunk = buffer[pos:nul]
        if not chunk:
            break
        entry = chunk.decode("utf-8", errors="replace")
        key, sep, _ = entry.partition("=")
        if sep and key:
            entries.append(entry)
        else:
            logger.debug("dropping non KEY=VALUE string", entry=entry)
        pos = nul + 1
    return entries


class DarwinEnvironmentReader:
    """Reads a process environment with sysctl(KERN_PROCARGS2)."""

    def __init__(self) -> None:
        self._libc = None

    def _sysctl(self):
        if self._libc is None:
            path = ctypes.util.find_library("c")
            if path is None:
                raise Unavailable("libc not found")
            self._libc = ctypes.CDLL(path, use_errno=True)
        return self._libc.sysctl

    def _query(self, mib: list[int], size: int) -> bytes:
        sysctl = self._sysctl()
        mib_array = (ctypes.c_int * len(mib))(*mib)
        buf = ctypes.create_string_buffer(size)
        length = ctypes.c_size_t(size)
        if sysctl(mib_array, len(mib), buf, ctypes.byref(length), None, 0) != 0:
            raise OSError(ctypes.get_errno(), "sysctl failed")
        return buf.raw[: length.value]

    def _argmax(self) -> int:
        raw = self._query([CTL_KERN, KERN_ARGMAX], struct.calcsize("i"))
        (argmax,) = struct.unpack("i", raw)
        return argmax

    def read(self, pid: int) -> EnvironmentSet:
        """Environment strings of ``pid``."""
        try:
            raw = self._query([CTL_KERN, KERN_PROCARGS2, pid], self._argmax())
        except OSError as exc:
            if exc.errno == errno.EPERM:
                raise PermissionDenied(f"not allowed to read the environment of process {pid}", pid=pid) from exc
            if exc.errno == errno.EINVAL and psutil.pid_exists(pid):
                # the kernel answers EINVAL for processes of other users
                raise PermissionDenied(f"not allowed to read the environment of process {pid}", pid=pid) from exc
            if exc.errno in (errno.EINVAL, errno.ESRCH):
                raise NotFound(f"process {pid} not found", pid=pid) from exc
            raise Unavailable(f"sysctl(KERN_PROCARGS2) failed for process {pid}: {exc}", pid=pid) from exc
        return EnvironmentSet(tuple(parse_procargs2(raw)))
