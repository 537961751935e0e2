"""
distributed.py

Pull-based governor/worker scheduling over MPI.

Rank 0 (governor) is the only sequential reader of the job file. Workers
ask for work, get a (seed, byte_offset, sequence_index) triple back, read
the one line it names from their own handle on the file, dock it, and ask
again. Once the file is exhausted every worker gets one TERMINATION reply
to its next request.

The fabric argument is anything with the MPIFabric interface
(wait_for_request / dispatch / terminate / drain on the governor side,
request_work / receive_assignment on the worker side).
"""

from pathlib import Path

from .errors import JobFileError, TooFewRanksError
from .executor import JobExecutor, base_filename
from .jobsource import JobSource, read_line_at
from .seeds import SeedGenerator


def run_governor(fabric, source: JobSource, seeds: SeedGenerator, verbose: bool = True) -> int:
    """
    Hand out every job in source to whichever worker asks first.

    Args:
        fabric: Transport (MPIFabric on rank 0)
        source: Job source; should be opened with blank_ends=True
        seeds: Seed generator owned by the governor
        verbose: Print one line per request/assignment

    Returns:
        Number of real jobs assigned
    """
    if fabric.size < 2:
        raise TooFewRanksError(
            "Cannot use MPI if there is only one rank available. "
            "Use fork-based parallelism instead."
        )
    if verbose:
        print(f"[governor] Number of ranks: {fabric.size}", flush=True)

    seeds.warm()
    assigned = 0
    while True:
        item = source.next(seed=seeds.draw())
        if item is None:
            # Checked before taking a request, so no worker is ever sent a non-job.
            if verbose:
                print("[governor] End of batch file", flush=True)
            break
        desc, line = item

        worker, processed = fabric.wait_for_request()
        if verbose:
            print(f"[governor] RECEIVED request from rank {worker} (processed: {processed})", flush=True)
        fabric.dispatch(worker, desc)
        assigned += 1
        if verbose:
            print(f"[governor] SENT [{desc.seed},{desc.byte_offset},{desc.sequence_index}] "
                  f"({base_filename(line)}) to rank {worker}", flush=True)

    # Every worker still has one request coming; answer each with TERMINATION.
    for rank in range(1, fabric.size):
        fabric.wait_for_request(source=rank)
        fabric.terminate(rank)
        if verbose:
            print(f"[governor] STOP sent to rank {rank}", flush=True)
    fabric.drain()

    if verbose:
        print(f"[governor] {assigned} ligands assigned to {fabric.size - 1} workers", flush=True)
    return assigned


def run_worker(fabric, executor: JobExecutor, job_file, verbose: bool = True) -> int:
    """Request, dock, repeat until TERMINATION. Returns the number of jobs processed."""
    job_file = Path(job_file)
    if not job_file.is_file():
        raise JobFileError(f"Job file not found: {job_file}")

    rank = getattr(fabric, "rank", "?")
    if verbose:
        print(f"[worker {rank}] Initialized", flush=True)

    processed = 0
    while True:
        fabric.request_work(processed)
        desc = fabric.receive_assignment()
        if desc.is_termination:
            break

        line = read_line_at(job_file, desc.byte_offset)
        if verbose:
            print(f"[worker {rank}] Received ligand ({desc.sequence_index},{base_filename(line)})", flush=True)
        executor.run(line, desc.seed, index=desc.sequence_index)
        # Failed jobs count too; the counter is only reported to the governor.
        processed += 1

    if verbose:
        print(f"[worker {rank}] Done, {processed} ligands processed", flush=True)
    return processed
