"""Tests for the Inspector facade."""

import os
import signal
import socket
import subprocess
import sys

import pytest

from conftest import tcp_line
from portsleuth.errors import NotFound, PermissionDenied, Unavailable
from portsleuth.inspector import Inspector

live = pytest.mark.skipif(sys.platform not in ("linux", "darwin"), reason="needs Linux or macOS")
linux_only = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs /proc")

MISSING_PID = 2**22 + 1000


def test_unsupported_platform():
    """Test that an unsupported platform raises Unavailable."""
    with pytest.raises(Unavailable):
        Inspector(platform="win32")


@pytest.mark.skipif(sys.byteorder != "little", reason="fixtures use little-endian /proc output")
def test_linux_inspector_over_fake_proc(fake_proc):
    """Test every facade query against a fake /proc tree."""
    fake_proc.write_tcp(tcp_line(0, "00000000:1F90", inode=12345))
    fake_proc.add_process(1, name="init", ppid=0)
    fake_proc.add_process(500, name="server", ppid=1, sockets=(12345,), environ=b"PORT=8080\x00")
    inspector = Inspector(platform="linux", proc_root=fake_proc.root)

    records = inspector.resolve_port(8080)
    assert [(r.pid, r.state) for r in records] == [(500, "LISTEN")]

    assert inspector.get_process(500).name == "server"
    assert inspector.get_ancestry(500).pids == [500, 1]
    assert list(inspector.get_environment(500)) == ["PORT=8080"]
    assert sorted(p.pid for p in inspector.list_all_processes()) == [1, 500]


@live
class TestLiveSystem:
    """Tests against the running kernel."""

    def test_get_process_returns_requested_pid(self):
        """Test that get_process describes the requested pid."""
        assert Inspector().get_process(os.getpid()).pid == os.getpid()

    def test_missing_process(self):
        """Test that an absent pid raises NotFound."""
        with pytest.raises(NotFound):
            Inspector().get_process(MISSING_PID)

    def test_ancestry_of_self_has_no_repeats(self):
        """Test the ancestry of the current process."""
        chain = Inspector().get_ancestry(os.getpid())

        assert chain.leaf.pid == os.getpid()
        assert len(set(chain.pids)) == len(chain)
        if len(chain) > 1:
            assert chain[1].pid == os.getppid()

    def test_list_all_processes_contains_self(self):
        """Test that the process list includes the current process."""
        pids = [proc.pid for proc in Inspector().list_all_processes()]

        assert os.getpid() in pids

    def test_get_environment_of_self(self):
        """Test reading the own environment."""
        env = Inspector().get_environment(os.getpid())

        assert all(key for key, _ in env.pairs())

    @linux_only
    def test_resolve_listening_socket(self):
        """Test resolving a socket opened by the test itself."""
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]

            records = Inspector().resolve_port(port)

            listening = [r for r in records if r.state == "LISTEN"]
            assert len(listening) == 1
            assert listening[0].pid == os.getpid()
            assert listening[0].local_address == "127.0.0.1"
            assert all(r.local_port == port for r in records)
        finally:
            server.close()

    def test_terminate_child(self):
        """Test terminating a child process."""
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        inspector = Inspector()
        try:
            inspector.terminate(child.pid, signal.SIGTERM)
            child.wait(timeout=5)

            assert not inspector.is_running(child.pid)
        finally:
            if child.poll() is None:
                child.kill()
                child.wait()

    def test_terminate_missing_process(self):
        """Test that terminating an absent pid raises NotFound."""
        with pytest.raises(NotFound):
            Inspector().terminate(MISSING_PID)

    @pytest.mark.skipif(os.geteuid() == 0, reason="root may signal anything")
    def test_terminate_init_is_permission_denied(self):
        """Test that signalling another user's init raises PermissionDenied."""
        if Inspector().get_process(1).uid == os.geteuid():
            pytest.skip("pid 1 belongs to the current user")
        with pytest.raises(PermissionDenied):
            Inspector().terminate(1, 0)

    def test_is_running(self):
        """Test is_running for the current and an absent process."""
        inspector = Inspector()

        assert inspector.is_running(os.getpid())
        assert not inspector.is_running(MISSING_PID)

    def test_terminate_negative_pid_is_not_found(self):
        """Test that a negative pid raises NotFound instead of ValueError."""
        with pytest.raises(NotFound):
            Inspector().terminate(-5)

    def test_terminate_pid_zero_is_refused(self):
        """Test that pid 0 is never signalled."""
        with pytest.raises(PermissionDenied):
            Inspector().terminate(0)

    def test_is_running_negative_pid(self):
        """Test that a negative pid is not running."""
        assert not Inspector().is_running(-5)
