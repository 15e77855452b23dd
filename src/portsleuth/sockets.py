"""Resolve which processes hold TCP connections on a port."""

import os
import re
import socket
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from portsleuth.errors import MalformedData, Unavailable
from portsleuth.logs import get_logger
from portsleuth.models import UNKNOWN_OWNER, ConnectionRecord
from portsleuth.procfs import DEFAULT_PROC_ROOT

logger = get_logger(__name__)

TCP_STATES = {
    0x01: "ESTABLISHED",
    0x02: "SYN_SENT",
    0x03: "SYN_RECV",
    0x04: "FIN_WAIT1",
    0x05: "FIN_WAIT2",
    0x06: "TIME_WAIT",
    0x07: "CLOSE",
    0x08: "CLOSE_WAIT",
    0x09: "LAST_ACK",
    0x0A: "LISTEN",
    0x0B: "CLOSING",
}

# (file name under <proc_root>/net, protocol tag)
PROC_NET_TABLES = (("tcp", "TCP"), ("tcp6", "TCP6"))

SOCKET_LINK_RE = re.compile(r"socket:\[(\d+)\]")

MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int) -> int:
    """Return ``port`` unchanged, or raise ValueError outside 1..65535."""
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"port must be between {MIN_PORT} and {MAX_PORT}, got {port}")
    return port


def decode_state(code: int) -> str:
    """Name of a kernel TCP state code, UNKNOWN for codes not in the table."""
    return TCP_STATES.get(code, "UNKNOWN")


def decode_address(hex_addr: str) -> str:
    """
    Decode the address half of a /proc/net/tcp{,6} ``ADDR:PORT`` field.

    The kernel prints the address as consecutive 32-bit words, each in host
    byte order: 8 hex digits for IPv4 and 32 for IPv6.
    """
    try:
        raw = bytes.fromhex(hex_addr)
    except ValueError as exc:
        raise MalformedData(f"bad address {hex_addr!r}") from exc

    if len(raw) == 4:
        family = socket.AF_INET
    elif len(raw) == 16:
        family = socket.AF_INET6
    else:
        raise MalformedData(f"bad address length {len(raw)} in {hex_addr!r}")

    if sys.byteorder == "little":
        raw = b"".join(raw[i : i + 4][::-1] for i in range(0, len(raw), 4))
    return socket.inet_ntop(family, raw)


def decode_endpoint(field: str) -> tuple[str, int]:
    """Decode an ``ADDR:PORT`` field whose port is hexadecimal."""
    addr, sep, port = field.partition(":")
    if not sep:
        raise MalformedData(f"bad endpoint {field!r}")
    try:
        return decode_address(addr), int(port, 16)
    except ValueError as exc:
        raise MalformedData(f"bad port in {field!r}") from exc


@dataclass(slots=True, frozen=True)
class TcpTableEntry:
    """One line of /proc/net/tcp or /proc/net/tcp6."""

    protocol: str
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: str
    uid: int
    inode: int


def parse_tcp_line(line: str, protocol: str) -> TcpTableEntry:
    """
    Parse one data line of a connection table.

    Columns: sl, local_address, rem_address, st, tx_queue:rx_queue,
    tr:tm->when, retrnsmt, uid, timeout, inode, ...
    """
    fields = line.split()
    if len(fields) < 10 or not fields[0].endswith(":"):
        raise MalformedData(f"expected at least 10 columns, got {len(fields)}")

    local_address, local_port = decode_endpoint(fields[1])
    remote_address, remote_port = decode_endpoint(fields[2])
    try:
        state = decode_state(int(fields[3], 16))
        uid = int(fields[7])
        inode = int(fields[9])
    except ValueError as exc:
        raise MalformedData(str(exc)) from exc

    return TcpTableEntry(
        protocol=protocol,
        local_address=local_address,
        local_port=local_port,
        remote_address=remote_address,
        remote_port=remote_port,
        state=state,
        uid=uid,
        inode=inode,
    )


def parse_tcp_table(text: str, protocol: str, port: int | None = None) -> list[TcpTableEntry]:
    """Parse a whole table, skipping the header and malformed lines."""
    entries = []
    for line in text.splitlines()[1:]:
        if not line.strip():
            continue
        try:
            entry = parse_tcp_line(line, protocol)
        except MalformedData as exc:
            logger.debug("skipping malformed connection line", protocol=protocol, line=line, error=str(exc))
            continue
        if port is None or entry.local_port == port:
            entries.append(entry)
    return entries


class SocketOwnerIndex:
    """
    Map of socket inode to the pid holding it.

    Built with a single pass over every ``<proc_root>/<pid>/fd/*`` link.
    Processes whose descriptors cannot be listed (other users, exited
    mid-scan) are skipped. When several processes share a socket the first
    one enumerated wins.
    """

    def __init__(self, owners: dict[int, int] | None = None) -> None:
        self._owners: dict[int, int] = dict(owners or {})

    @classmethod
    def build(cls, proc_root: Path) -> "SocketOwnerIndex":
        proc_root = Path(proc_root)
        owners: dict[int, int] = {}
        try:
            names = os.listdir(proc_root)
        except OSError as exc:
            raise Unavailable(f"cannot list {proc_root}: {exc}") from exc

        for name in names:
            if not name.isdigit():
                continue
            fd_dir = proc_root / name / "fd"
            try:
                fds = os.listdir(fd_dir)
            except OSError:
                continue
            pid = int(name)
            for fd in fds:
                try:
                    target = os.readlink(fd_dir / fd)
                except OSError:
                    continue
                match = SOCKET_LINK_RE.fullmatch(target)
                if match:
                    owners.setdefault(int(match.group(1)), pid)

        logger.debug("built socket owner index", sockets=len(owners))
        return cls(owners)

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, inode: int) -> bool:
        return inode in self._owners

    def owner(self, inode: int) -> int:
        """Return the owning pid, or UNKNOWN_OWNER."""
        if inode == 0:
            return UNKNOWN_OWNER
        return self._owners.get(inode, UNKNOWN_OWNER)


class ProcfsPortResolver:
    """Resolves port owners from /proc/net/tcp{,6} and the socket owner index."""

    def __init__(self, proc_root: Path = DEFAULT_PROC_ROOT) -> None:
        self._proc_root = Path(proc_root)

    def _read_tables(self, port: int) -> list[TcpTableEntry]:
        entries: list[TcpTableEntry] = []
        readable = 0
        for filename, protocol in PROC_NET_TABLES:
            path = self._proc_root / "net" / filename
            try:
                text = path.read_text(encoding="ascii", errors="replace")
            except OSError as exc:
                logger.debug("connection table unavailable", path=str(path), error=str(exc))
                continue
            readable += 1
            entries.extend(parse_tcp_table(text, protocol, port))
        if not readable:
            raise Unavailable(f"no TCP connection table readable under {self._proc_root / 'net'}")
        return entries

    def resolve(self, port: int) -> list[ConnectionRecord]:
        """Connections on ``port``, building the owner index only if any match."""
        validate_port(port)
        entries = self._read_tables(port)
        if not entries:
            return []

        index = SocketOwnerIndex.build(self._proc_root)
        records = []
        for entry in entries:
            pid = index.owner(entry.inode)
            if pid == UNKNOWN_OWNER:
                logger.debug("socket owner not found", port=port, inode=entry.inode)
            records.append(
                ConnectionRecord(
                    protocol=entry.protocol,
                    local_address=entry.local_address,
                    local_port=entry.local_port,
                    remote_address=entry.remote_address,
                    remote_port=entry.remote_port,
                    state=entry.state,
                    pid=pid,
                )
            )
        return records


def split_lsof_endpoint(text: str) -> tuple[str, int]:
    """
    Split an lsof ``HOST:PORT`` endpoint. IPv6 hosts come in brackets.

    A ``*`` port (unbound) is returned as 0.
    """
    host, sep, port = text.rpartition(":")
    if not sep:
        raise MalformedData(f"bad lsof endpoint {text!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if port == "*":
        return host, 0
    try:
        return host, int(port)
    except ValueError as exc:
        raise MalformedData(f"bad lsof port in {text!r}") from exc


def parse_lsof_fields(output: str, port: int) -> list[ConnectionRecord]:
    """
    Parse ``lsof -F pcntT`` output into connection records.

    Each line starts with a one-letter field tag: ``p`` pid (starts a
    process set), ``f`` descriptor (starts a file set), ``t`` type,
    ``n`` name (``local`` or ``local->remote``), ``T`` TCP info such as
    ``ST=LISTEN``. Files whose local port is not ``port`` are dropped,
    since lsof also selects connections whose *remote* port matches.
    """
    records: list[ConnectionRecord] = []
    pid = UNKNOWN_OWNER
    current: dict[str, str] = {}

    def flush() -> None:
        name = current.get("n")
        if not name:
            return
        local, _, remote = name.partition("->")
        try:
            local_address, local_port = split_lsof_endpoint(local)
            remote_address, remote_port = split_lsof_endpoint(remote) if remote else ("", 0)
        except MalformedData as exc:
            logger.debug("skipping malformed lsof name", name=name, error=str(exc))
            return
        if local_port != port:
            return
        is_v6 = current.get("t") == "IPv6" or ":" in local_address
        records.append(
            ConnectionRecord(
                protocol="TCP6" if is_v6 else "TCP",
                local_address=local_address,
                local_port=local_port,
                remote_address=remote_address,
                remote_port=remote_port,
                state=current.get("ST", "LISTEN"),
                pid=pid,
            )
        )

    for line in output.splitlines():
        if not line:
            continue
        tag, value = line[0], line[1:]
        if tag == "p":
            flush()
            current = {}
            try:
                pid = int(value)
            except ValueError:
                logger.debug("bad lsof pid field", line=line)
                pid = UNKNOWN_OWNER
        elif tag == "f":
            flush()
            current = {}
        elif tag in ("n", "t"):
            current[tag] = value
        elif tag == "T":
            key, _, info = value.partition("=")
            if key == "ST":
                current["ST"] = info
    flush()
    return records


class LsofPortResolver:
    """Resolves port owners by running lsof (macOS)."""

    def __init__(self, lsof_path: str = "lsof", timeout: float = 10.0) -> None:
        self._lsof_path = lsof_path
        self._timeout = timeout

    def command(self, port: int) -> list[str]:
        """Argument vector used to query ``port``."""
        return [self._lsof_path, "-nP", f"-iTCP:{port}", "-F", "pcntT"]

    def resolve(self, port: int) -> list[ConnectionRecord]:
        """Run lsof for ``port`` and parse its field output."""
        validate_port(port)
        argv = self.command(port)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise Unavailable(f"{self._lsof_path} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise Unavailable(f"{self._lsof_path} timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise Unavailable(f"cannot run {self._lsof_path}: {exc}") from exc

        # lsof exits 1 when nothing matched
        if result.returncode not in (0, 1):
            raise Unavailable(
                f"{self._lsof_path} exited with status {result.returncode}: {result.stderr.strip()}"
            )
        return parse_lsof_fields(result.stdout, port)
