"""
pool.py

Local batch execution: sequential, or one forked child per ligand with at
most K children alive at once.

The parent is the only reader of the job file. Each child inherits the
parent's state at fork time (receptor template included), runs exactly one
job and exits; children never talk back to the parent.
"""

import os
import sys
import traceback
from collections import deque
from dataclasses import replace
from typing import Optional

from tqdm import tqdm

from .errors import ForkError, UsageError
from .executor import JobExecutor
from .jobsource import JobSource
from .seeds import SeedGenerator


def _job_seed(seeds: SeedGenerator) -> int:
    seeds.warm()
    return seeds.draw()


def run_sequential(source: JobSource, executor: JobExecutor, seeds: SeedGenerator,
                   progress: bool = False, verbose: bool = True) -> int:
    """Run every job in this process. Returns the number of jobs attempted."""
    attempted = succeeded = 0
    with tqdm(desc="Docking", unit="ligand", disable=not progress) as pbar:
        for desc, line in source:
            result = executor.run(line, _job_seed(seeds), index=desc.sequence_index)
            attempted += 1
            succeeded += bool(result["success"])
            pbar.update(1)
    if verbose:
        print(f"[pool] End of file: {attempted} ligands, {succeeded} succeeded, "
              f"{attempted - succeeded} failed", flush=True)
    return attempted


class LocalForkPool:
    """
    Fork-per-job pool bounded to max_children live processes.

    In-flight children are kept in FIFO order. When the bound is reached the
    parent waits for the child at the *front* of the queue (os.waitpid on that
    pid), not for whichever child happens to finish first, so the queue and
    the set of live processes never drift apart.
    """

    def __init__(self, executor: JobExecutor, max_children: int = 1,
                 seeds: Optional[SeedGenerator] = None, progress: bool = False,
                 verbose: bool = True):
        if max_children < 1:
            raise UsageError("forknbr must be 1 or greater")
        self.executor = executor
        self.max_children = max_children
        self.seeds = seeds if seeds is not None else SeedGenerator()
        self.progress = progress
        self.verbose = verbose
        self.inflight = deque()
        self.peak = 0
        self.failed_children = 0

    def _spawn(self, line: str, seed: int, index: int) -> int:
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            pid = os.fork()
        except OSError as e:
            raise ForkError(f"fork() failed: {e}") from e

        if pid == 0:
            code = 0
            try:
                self.executor.run(line, seed, index=index)
            except BaseException:
                traceback.print_exc()
                code = 1
            finally:
                sys.stdout.flush()
                sys.stderr.flush()
                os._exit(code)
        return pid

    def _reap_oldest(self):
        pid = self.inflight.popleft()
        _, status = os.waitpid(pid, 0)
        code = os.waitstatus_to_exitcode(status)
        if code != 0:
            self.failed_children += 1
            print(f"[pool] child {pid} exited with status {code}", file=sys.stderr, flush=True)

    def drain(self):
        while self.inflight:
            self._reap_oldest()

    def run(self, source: JobSource) -> int:
        """Fork one child per job in source. Returns the number of jobs started."""
        started = 0
        # No tqdm monitor thread may be alive when the parent forks.
        tqdm.monitor_interval = 0
        with tqdm(desc="Docking", unit="ligand", disable=not self.progress) as pbar:
            while True:
                item = source.next()
                if item is None:
                    break
                desc, line = item
                desc = replace(desc, seed=_job_seed(self.seeds))

                pid = self._spawn(line, desc.seed, desc.sequence_index)
                self.inflight.append(pid)
                self.peak = max(self.peak, len(self.inflight))
                started += 1
                pbar.update(1)
                if len(self.inflight) >= self.max_children:
                    self._reap_oldest()

            if self.verbose:
                print(f"[pool] End of file, waiting for {len(self.inflight)} running children", flush=True)
            self.drain()

        if self.verbose:
            print(f"[pool] {started} ligands processed with up to {self.max_children} processes", flush=True)
        return started
