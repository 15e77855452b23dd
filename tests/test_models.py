"""Tests for portsleuth data models."""

from portsleuth.models import (
    UNKNOWN_OWNER,
    AncestryChain,
    ConnectionRecord,
    EnvironmentSet,
    ProcessSnapshot,
)


def make_snapshot(pid: int = 123, ppid: int = 1, name: str = "test_process") -> ProcessSnapshot:
    return ProcessSnapshot(
        pid=pid,
        ppid=ppid,
        name=name,
        cmdline="/usr/bin/test --flag",
        username="testuser",
        uid=1000,
        state="S",
        vsz_kb=20480,
        rss_kb=1024,
        start_time=1700000000,
    )


def test_process_snapshot_creation():
    """Test ProcessSnapshot dataclass creation."""
    snapshot = make_snapshot()

    assert snapshot.pid == 123
    assert snapshot.ppid == 1
    assert snapshot.name == "test_process"
    assert snapshot.cmdline == "/usr/bin/test --flag"
    assert snapshot.username == "testuser"
    assert snapshot.uid == 1000
    assert snapshot.state == "S"
    assert snapshot.vsz_kb == 20480
    assert snapshot.rss_kb == 1024
    assert snapshot.start_time == 1700000000


def test_process_snapshot_is_frozen():
    """Test that ProcessSnapshot is immutable (frozen)."""
    snapshot = make_snapshot(pid=1, ppid=0, name="init")

    try:
        snapshot.pid = 999
        raise AssertionError("Should have raised FrozenInstanceError")
    except AttributeError:
        pass  # Expected behavior for frozen dataclass


def test_process_snapshot_uses_slots():
    """Test that ProcessSnapshot uses __slots__."""
    snapshot = make_snapshot()

    assert not hasattr(snapshot, "__dict__")


def test_connection_record_defaults_to_unknown_owner():
    """Test that a record without a pid has an unknown owner."""
    record = ConnectionRecord(
        protocol="TCP",
        local_address="0.0.0.0",
        local_port=8080,
        remote_address="0.0.0.0",
        remote_port=0,
        state="LISTEN",
    )

    assert record.pid == UNKNOWN_OWNER
    assert not record.has_owner


def test_connection_record_with_owner():
    """Test a record carrying its owner pid."""
    record = ConnectionRecord("TCP6", "::1", 443, "::", 0, "LISTEN", pid=500)

    assert record.has_owner
    assert record.pid == 500


def test_ancestry_chain_accessors():
    """Test leaf, root and pids of a chain."""
    chain = AncestryChain(
        (
            make_snapshot(pid=300, ppid=200, name="leaf"),
            make_snapshot(pid=200, ppid=1, name="middle"),
            make_snapshot(pid=1, ppid=0, name="init"),
        )
    )

    assert len(chain) == 3
    assert chain.leaf.name == "leaf"
    assert chain.root.name == "init"
    assert chain[1].pid == 200
    assert chain.pids == [300, 200, 1]
    assert [proc.name for proc in chain] == ["leaf", "middle", "init"]


def test_environment_set_keeps_order_and_duplicates():
    """Test that entries keep their order and duplicates."""
    env = EnvironmentSet(("PATH=/bin", "HOME=/root", "PATH=/usr/bin"))

    assert len(env) == 3
    assert list(env) == ["PATH=/bin", "HOME=/root", "PATH=/usr/bin"]
    assert env.pairs() == [("PATH", "/bin"), ("HOME", "/root"), ("PATH", "/usr/bin")]


def test_environment_pairs_split_on_first_equals():
    """Test that pairs split on the first '='."""
    env = EnvironmentSet(("OPTS=a=b=c", "EMPTY="))

    assert env.pairs() == [("OPTS", "a=b=c"), ("EMPTY", "")]
