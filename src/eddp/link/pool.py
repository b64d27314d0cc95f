"""
Thread pool for independent candidate jobs (building and relaxing
structures) with a single coordinator that consumes the results.

Workers loop over a bounded job queue: take a job, run it, put the
result on the result queue.  One sentinel per worker ends the loop.  An
interrupt event tells running jobs to stop; subprocesses started via
`run_command()` are killed when it is set.

"""

import queue
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from ..exceptions import JobCancelled
from ..log import logger

__author__ = "The eddp developers"
__date__ = "2023-03-02"

SENTINEL = None


@dataclass
class JobResult:
    """
    Outcome of a job: `value` on success, `error` otherwise.
    """
    job_id: int
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self):
        return self.error is None


def run_command(cmd, cancel_event=None, timeout=None, stdin=None,
                cwd=None, poll_interval=0.05):
    """
    Run a command, killing it when `cancel_event` is set or the timeout
    expires.

    Arguments:
      cmd            command as a list of strings
      cancel_event   threading.Event
      timeout        seconds
      stdin          text passed to the process

    Returns:
      stdout of the process (str)

    Raises:
      subprocess.TimeoutExpired, subprocess.CalledProcessError,
      JobCancelled
    """
    proc = subprocess.Popen(cmd, stdin=subprocess.PIPE if stdin else None,
                            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                            text=True, cwd=cwd)
    start = time.monotonic()
    if stdin:
        proc.stdin.write(stdin)
        proc.stdin.close()
    # drain the pipes in the background so the process cannot block
    output = {}

    def _read(name, stream):
        output[name] = stream.read()

    readers = [threading.Thread(target=_read, args=(n, s), daemon=True)
               for n, s in (("out", proc.stdout), ("err", proc.stderr))]
    for t in readers:
        t.start()
    try:
        while proc.poll() is None:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled()
            if timeout is not None and time.monotonic() - start > timeout:
                raise subprocess.TimeoutExpired(cmd, timeout)
            time.sleep(poll_interval)
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    for t in readers:
        t.join()
    if proc.returncode != 0:
        raise subprocess.CalledProcessError(
            proc.returncode, cmd, output.get("out"), output.get("err"))
    return output.get("out", "")


class WorkerPool(object):
    """
    Pool of worker threads.

    Arguments:
      work         callable work(job, cancel_event) -> value
      n_workers    number of worker threads
      maxsize      bound of the job and result queues (default:
                   2*n_workers)

    """

    def __init__(self, work: Callable, n_workers: int = 1, maxsize=None):
        self.work = work
        self.n_workers = max(1, int(n_workers))
        maxsize = maxsize or 2*self.n_workers
        self.jobs = queue.Queue(maxsize=maxsize)
        self.results = queue.Queue(maxsize=maxsize)
        self.cancel_event = threading.Event()
        self._threads = []

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.interrupt()
        self.shutdown()
        return False

    def start(self):
        for i in range(self.n_workers):
            t = threading.Thread(target=self._loop, name="eddp-worker-{}"
                                 .format(i), daemon=True)
            t.start()
            self._threads.append(t)

    def _loop(self):
        while True:
            item = self.jobs.get()
            if item is SENTINEL:
                break
            job_id, job = item
            if self.cancel_event.is_set():
                self.results.put(JobResult(job_id, error=JobCancelled()))
                continue
            try:
                value = self.work(job, self.cancel_event)
            except Exception as err:
                self.results.put(JobResult(job_id, error=err))
            else:
                self.results.put(JobResult(job_id, value=value))

    def submit(self, job_id, job):
        self.jobs.put((job_id, job))

    def get_result(self, timeout=None):
        return self.results.get(timeout=timeout)

    def interrupt(self):
        """
        Ask all running jobs to stop; pending jobs are dropped.
        """
        self.cancel_event.set()
        while True:
            try:
                self.jobs.get_nowait()
            except queue.Empty:
                break
        # unblock workers waiting on a full result queue
        while True:
            try:
                self.results.get_nowait()
            except queue.Empty:
                break

    def shutdown(self):
        """
        Send one sentinel per worker and wait for the workers to finish.
        """
        for t in self._threads:
            while t.is_alive():
                try:
                    self.jobs.put(SENTINEL, timeout=0.1)
                    break
                except queue.Full:
                    self._drain_results()
        for t in self._threads:
            while t.is_alive():
                self._drain_results()
                t.join(timeout=0.1)
        self._threads = []

    def _drain_results(self):
        while True:
            try:
                self.results.get_nowait()
            except queue.Empty:
                break


class FingerprintSet(object):
    """
    Running set of accepted fingerprints for near-duplicate detection.

    Arguments:
      tol   two fingerprints closer than tol (Euclidean distance) are
            duplicates
    """

    def __init__(self, tol):
        self.tol = tol
        self.fingerprints = []

    def __len__(self):
        return len(self.fingerprints)

    def is_duplicate(self, fp):
        fp = np.asarray(fp, dtype=float)
        for other in self.fingerprints:
            if other.shape == fp.shape and \
                    np.linalg.norm(other - fp) < self.tol:
                return True
        return False

    def add(self, fp):
        """
        Add fp unless it is a duplicate.

        Returns:
          True if accepted
        """
        if self.is_duplicate(fp):
            return False
        self.fingerprints.append(np.asarray(fp, dtype=float))
        return True


def run_jobs(work, make_job, n_accept, n_workers=1, accept=None,
             max_failures=None, progress=None):
    """
    Run jobs until `n_accept` results have been accepted.

    Arguments:
      work           callable work(job, cancel_event) -> value
      make_job       callable returning a new job (called for every
                     submission, including resubmissions)
      n_accept       number of results to accept
      n_workers      number of worker threads
      accept         callable accept(value) -> bool run by the
                     coordinator; rejected results are replaced by a new
                     job
      max_failures   stop after this many failed jobs (default:
                     10*n_accept); failures are logged as warnings
      progress       optional tqdm-like object with update(n)

    Returns:
      list of accepted values

    KeyboardInterrupt in the coordinator cancels all workers and is
    re-raised.
    """
    if n_accept <= 0:
        return []
    if max_failures is None:
        max_failures = 10*n_accept
    accepted = []
    nfail = 0
    pool = WorkerPool(work, n_workers)
    next_id = 0
    in_flight = 0
    with pool:
        try:
            for _ in range(min(n_accept, pool.n_workers)):
                pool.submit(next_id, make_job())
                next_id += 1
                in_flight += 1
            while len(accepted) < n_accept and in_flight > 0:
                result = pool.get_result()
                in_flight -= 1
                replace = True
                if not result.ok:
                    if isinstance(result.error, JobCancelled):
                        continue
                    nfail += 1
                    logger.warning("Job %d failed (%s): %s", result.job_id,
                                   type(result.error).__name__,
                                   result.error)
                    replace = nfail < max_failures
                elif accept is not None and not accept(result.value):
                    logger.info("Job %d rejected as duplicate - "
                                "resubmitting", result.job_id)
                else:
                    accepted.append(result.value)
                    if progress is not None:
                        progress.update(1)
                if replace and len(accepted) + in_flight < n_accept:
                    pool.submit(next_id, make_job())
                    next_id += 1
                    in_flight += 1
        except KeyboardInterrupt:
            logger.warning("Interrupted - cancelling running jobs")
            pool.interrupt()
            raise
        pool.interrupt()
    if len(accepted) < n_accept:
        logger.warning("Only %d of %d jobs succeeded", len(accepted),
                       n_accept)
    return accepted


def map_jobs(work, jobs, n_workers=1):
    """
    Run work(job, cancel_event) for every job with at most n_workers jobs
    in flight.

    Returns:
      list of JobResult in the order of completion

    KeyboardInterrupt cancels all workers and is re-raised.
    """
    jobs = list(jobs)
    results = []
    pool = WorkerPool(work, n_workers)
    with pool:
        try:
            submitted = 0
            while len(results) < len(jobs):
                while (submitted < len(jobs)
                       and submitted - len(results) < pool.n_workers):
                    pool.submit(submitted, jobs[submitted])
                    submitted += 1
                results.append(pool.get_result())
        except KeyboardInterrupt:
            logger.warning("Interrupted - cancelling running jobs")
            pool.interrupt()
            raise
    return results
