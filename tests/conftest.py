"""Shared fixtures: a fake /proc tree written under tmp_path."""

import os
from pathlib import Path

import pytest

BOOT_TIME = 1700000000
CLOCK_TICKS = 100


def stat_line(pid: int, name: str, state: str, ppid: int, start_ticks: int) -> str:
    # pid (comm) state ppid pgrp session tty tpgid flags minflt cminflt majflt
    # cmajflt utime stime cutime cstime priority nice threads itreal starttime ...
    fields = [state, str(ppid)] + ["0"] * 17 + [str(start_ticks), "1000", "200"]
    return f"{pid} ({name}) " + " ".join(fields) + "\n"


class FakeProc:
    """Builder for a minimal procfs layout."""

    def __init__(self, root: Path) -> None:
        self.root = root
        (root / "net").mkdir(parents=True)
        (root / "stat").write_text(f"cpu  1 2 3 4\nbtime {BOOT_TIME}\nprocesses 42\n")

    def add_process(
        self,
        pid: int,
        name: str = "proc",
        ppid: int = 1,
        state: str = "S",
        start_ticks: int = 500,
        uid: int | None = 0,
        vsz_kb: int = 2048,
        rss_kb: int = 512,
        cmdline: bytes | None = b"",
        environ: bytes | None = b"",
        sockets: tuple[int, ...] = (),
    ) -> Path:
        proc_dir = self.root / str(pid)
        (proc_dir / "fd").mkdir(parents=True)
        (proc_dir / "stat").write_text(stat_line(pid, name, state, ppid, start_ticks))
        if uid is not None:
            (proc_dir / "status").write_text(
                f"Name:\t{name}\n"
                f"State:\t{state} (sleeping)\n"
                f"PPid:\t{ppid}\n"
                f"Uid:\t{uid}\t{uid}\t{uid}\t{uid}\n"
                f"VmSize:\t    {vsz_kb} kB\n"
                f"VmRSS:\t    {rss_kb} kB\n"
            )
        if cmdline is not None:
            (proc_dir / "cmdline").write_bytes(cmdline)
        if environ is not None:
            (proc_dir / "environ").write_bytes(environ)
        for fd, inode in enumerate(sockets, start=3):
            os.symlink(f"socket:[{inode}]", proc_dir / "fd" / str(fd))
        os.symlink("/dev/null", proc_dir / "fd" / "0")
        return proc_dir

    def write_tcp(self, *lines: str, name: str = "tcp") -> None:
        header = (
            "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when "
            "retrnsmt   uid  timeout inode\n"
        )
        (self.root / "net" / name).write_text(header + "".join(line + "\n" for line in lines))


def tcp_line(
    slot: int,
    local: str,
    remote: str = "00000000:0000",
    state: str = "0A",
    uid: int = 1000,
    inode: int = 0,
) -> str:
    return (
        f"{slot:4d}: {local} {remote} {state} 00000000:00000000 00:00000000 "
        f"00000000 {uid:5d}        0 {inode} 1 0000000000000000 100 0 0 10 0"
    )


@pytest.fixture
def fake_proc(tmp_path: Path) -> FakeProc:
    return FakeProc(tmp_path / "proc")
