"""
fabric.py

mpi4py transport for the governor/worker protocol.

Messages are small int64 buffers:
  READY  worker -> governor  [processed_count]
  ASSIGN governor -> worker  [seed, byte_offset, sequence_index]

The governor keeps one send buffer per worker rank. Assignments go out
with a non-blocking Isend; the previous request for a rank is completed
before that rank's buffer is refilled.

Importing this module initialises MPI, so the driver only imports it when
--mpi is requested.
"""

import numpy as np
from mpi4py import MPI

from .jobsource import TERMINATION, JobDescriptor

GOVERNOR_RANK = 0
READY, ASSIGN = 1, 2


class MPIFabric:
    def __init__(self, comm=None):
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()
        self._buffers = {}   # rank -> int64[3]
        self._pending = {}   # rank -> MPI.Request
        self._counter = np.zeros(1, dtype=np.int64)

    # --------------------- governor side ---------------------

    def wait_for_request(self, source=None):
        """Block for a READY message. Returns (worker_rank, processed_count)."""
        status = MPI.Status()
        self.comm.Recv([self._counter, MPI.INT64_T],
                       source=MPI.ANY_SOURCE if source is None else source,
                       tag=READY, status=status)
        return status.Get_source(), int(self._counter[0])

    def _complete(self, rank):
        req = self._pending.pop(rank, None)
        if req is not None:
            req.Wait()

    def dispatch(self, rank: int, desc: JobDescriptor):
        self._complete(rank)
        buf = self._buffers.setdefault(rank, np.empty(3, dtype=np.int64))
        buf[:] = desc.to_array()
        self._pending[rank] = self.comm.Isend([buf, MPI.INT64_T], dest=rank, tag=ASSIGN)

    def terminate(self, rank: int):
        self._complete(rank)
        self.comm.Send([TERMINATION.to_array(), MPI.INT64_T], dest=rank, tag=ASSIGN)

    def drain(self):
        for rank in list(self._pending):
            self._complete(rank)

    # --------------------- worker side ---------------------

    def request_work(self, processed: int):
        self.comm.Send([np.array([processed], dtype=np.int64), MPI.INT64_T],
                       dest=GOVERNOR_RANK, tag=READY)

    def receive_assignment(self) -> JobDescriptor:
        buf = np.empty(3, dtype=np.int64)
        self.comm.Recv([buf, MPI.INT64_T], source=GOVERNOR_RANK, tag=ASSIGN)
        return JobDescriptor.from_array(buf)
