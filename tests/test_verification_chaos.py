"""Verification Test: Chaos Monkey - processes exiting mid-inspection.

Processes are terminated at random while the inspector enumerates them,
walks their ancestry and reads their environment. Every query must either
succeed or raise NotFound; nothing else may escape.
"""

import os
import random
import subprocess
import sys
import threading
import time

import pytest

from portsleuth.errors import NotFound, PermissionDenied
from portsleuth.inspector import Inspector

pytestmark = pytest.mark.skipif(sys.platform not in ("linux", "darwin"), reason="needs Linux or macOS")


def spawn_sleepers(count: int, duration: float = 60.0) -> list[subprocess.Popen]:
    return [subprocess.Popen(["sleep", str(duration)]) for _ in range(count)]


def reap(children: list[subprocess.Popen]) -> None:
    for child in children:
        if child.poll() is None:
            child.kill()
    for child in children:
        child.wait(timeout=5)


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_enumeration_survives_process_termination(self):
        """
        Test that list_all_processes never fails while processes die.

        A background thread terminates half of the children while the main
        thread keeps enumerating.
        """
        children = spawn_sleepers(40)
        inspector = Inspector()
        stop = threading.Event()

        def chaos() -> None:
            for child in random.sample(children, len(children) // 2):
                if stop.is_set():
                    return
                child.terminate()
                time.sleep(0.02)

        killer = threading.Thread(target=chaos)
        try:
            killer.start()
            rounds = 0
            deadline = time.time() + 3.0
            while killer.is_alive() or rounds < 3:
                processes = inspector.list_all_processes()
                assert any(proc.pid == os.getpid() for proc in processes)
                rounds += 1
                if time.time() > deadline:
                    break
        finally:
            stop.set()
            killer.join()
            reap(children)

        assert rounds >= 3

    def test_per_process_queries_only_raise_not_found(self):
        """
        Test that querying processes that exit underneath us fails cleanly.
        """
        children = spawn_sleepers(20)
        inspector = Inspector()
        unexpected = []

        try:
            for child in children:
                if random.random() < 0.5:
                    child.kill()
                    child.wait()
                try:
                    proc = inspector.get_process(child.pid)
                    assert proc.pid == child.pid
                    chain = inspector.get_ancestry(child.pid)
                    assert len(set(chain.pids)) == len(chain)
                    inspector.get_environment(child.pid)
                except (NotFound, PermissionDenied):
                    pass
                except Exception as exc:
                    unexpected.append(exc)
        finally:
            reap(children)

        assert unexpected == []

    def test_terminate_races_with_exit(self):
        """
        Test that terminating an already reaped process reports NotFound.
        """
        child = spawn_sleepers(1)[0]
        child.kill()
        child.wait()

        with pytest.raises(NotFound):
            Inspector().terminate(child.pid)

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="macOS hides most fields of zombies")
    def test_zombie_process_handling(self):
        """
        Test that a zombie is still described but not considered running.

        Zombie processes occur when a child terminates but its parent has
        not waited for it yet.
        """
        child = spawn_sleepers(1)[0]
        inspector = Inspector()
        try:
            child.kill()
            # Wait for the kernel to turn the child into a zombie without reaping it.
            deadline = time.time() + 5.0
            while time.time() < deadline:
                if inspector.get_process(child.pid).state == "Z":
                    break
                time.sleep(0.05)

            proc = inspector.get_process(child.pid)
            assert proc.state == "Z"
            assert proc.ppid == os.getpid()
            assert not inspector.is_running(child.pid)
            assert child.pid in inspector.get_ancestry(child.pid).pids
        finally:
            child.wait()
