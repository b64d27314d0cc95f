import itertools
import subprocess
import sys
import threading
import time
import unittest

import pytest

from ...exceptions import JobCancelled
from ..pool import (FingerprintSet, JobResult, WorkerPool, map_jobs,
                    run_command, run_jobs)


def identity(job, cancel_event):
    return job


class FingerprintSetTest(unittest.TestCase):

    def test_duplicates(self):
        fps = FingerprintSet(tol=0.1)
        self.assertTrue(fps.add([0.0, 1.0]))
        self.assertFalse(fps.add([0.05, 1.0]))
        self.assertTrue(fps.add([0.2, 1.0]))
        self.assertTrue(fps.is_duplicate([0.21, 1.0]))
        # different lengths are never duplicates
        self.assertTrue(fps.add([0.0, 1.0, 0.0]))
        self.assertEqual(len(fps), 3)


class RunJobsTest(unittest.TestCase):

    def test_accept_all(self):
        counter = itertools.count()
        out = run_jobs(identity, lambda: next(counter), 5, n_workers=2)
        self.assertEqual(sorted(out), [0, 1, 2, 3, 4])

    def test_duplicates_are_replaced(self):
        jobs = iter([1.0, 1.0, 1.0, 2.0, 2.0, 3.0, 4.0])
        fps = FingerprintSet(tol=1e-3)
        with self.assertLogs("eddp", level="INFO") as cm:
            out = run_jobs(identity, lambda: next(jobs), 3,
                           accept=lambda v: fps.add([v]))
        self.assertEqual(out, [1.0, 2.0, 3.0])
        self.assertEqual(
            sum("rejected as duplicate" in line for line in cm.output), 3)

    def test_failures_are_logged(self):
        def work(job, cancel_event):
            if job % 2:
                raise ValueError("odd job {}".format(job))
            return job

        counter = itertools.count()
        with self.assertLogs("eddp", level="WARNING") as cm:
            out = run_jobs(work, lambda: next(counter), 3)
        self.assertEqual(out, [0, 2, 4])
        self.assertEqual(sum("failed" in line for line in cm.output), 2)

    def test_max_failures(self):
        def work(job, cancel_event):
            raise RuntimeError("broken")

        with self.assertLogs("eddp", level="WARNING") as cm:
            out = run_jobs(work, lambda: 0, 2, max_failures=3)
        self.assertEqual(out, [])
        self.assertEqual(sum("failed" in line for line in cm.output), 3)
        self.assertIn("Only 0 of 2 jobs succeeded", cm.output[-1])

    def test_nothing_to_do(self):
        self.assertEqual(run_jobs(identity, lambda: 0, 0), [])

    def test_progress(self):
        class Progress(object):
            n = 0

            def update(self, n):
                self.n += n

        progress = Progress()
        run_jobs(identity, lambda: 1, 4, progress=progress)
        self.assertEqual(progress.n, 4)


def test_keyboard_interrupt_is_reraised():
    def accept(value):
        raise KeyboardInterrupt()

    before = threading.active_count()
    with pytest.raises(KeyboardInterrupt):
        run_jobs(identity, lambda: 1, 3, n_workers=2, accept=accept)
    # all workers have been shut down
    deadline = time.monotonic() + 5.0
    while threading.active_count() > before and time.monotonic() < deadline:
        time.sleep(0.01)
    assert threading.active_count() <= before


def test_map_jobs():
    results = map_jobs(lambda job, ev: job**2, range(7), n_workers=3)
    assert len(results) == 7
    assert all(isinstance(r, JobResult) and r.ok for r in results)
    assert sorted((r.job_id, r.value) for r in results) == \
        [(i, i**2) for i in range(7)]


def test_map_jobs_errors():
    def work(job, cancel_event):
        if job == 2:
            raise ValueError("two")
        return job

    results = {r.job_id: r for r in map_jobs(work, range(4))}
    assert not results[2].ok
    assert isinstance(results[2].error, ValueError)
    assert results[3].value == 3


def test_pool_cancels_pending_jobs():
    started = threading.Event()

    def work(job, cancel_event):
        started.set()
        cancel_event.wait(5.0)
        if cancel_event.is_set():
            raise JobCancelled()
        return job

    pool = WorkerPool(work, n_workers=1)
    with pool:
        pool.submit(0, "job")
        assert started.wait(5.0)
        pool.interrupt()
        assert pool.cancel_event.is_set()


def test_run_command():
    out = run_command([sys.executable, "-c", "print('hello')"])
    assert out.strip() == "hello"
    out = run_command([sys.executable, "-c",
                       "import sys; print(sys.stdin.read().upper())"],
                      stdin="abc")
    assert out.strip() == "ABC"


def test_run_command_failure():
    with pytest.raises(subprocess.CalledProcessError) as exc:
        run_command([sys.executable, "-c",
                     "import sys; sys.stderr.write('bad'); sys.exit(3)"])
    assert exc.value.returncode == 3
    assert exc.value.stderr == "bad"


def test_run_command_timeout():
    start = time.monotonic()
    with pytest.raises(subprocess.TimeoutExpired):
        run_command([sys.executable, "-c", "import time; time.sleep(30)"],
                    timeout=0.3)
    assert time.monotonic() - start < 10.0


def test_run_command_cancel():
    event = threading.Event()
    timer = threading.Timer(0.2, event.set)
    timer.start()
    start = time.monotonic()
    with pytest.raises(JobCancelled):
        run_command([sys.executable, "-c", "import time; time.sleep(30)"],
                    cancel_event=event)
    timer.join()
    assert time.monotonic() - start < 10.0
