"""
Shared fixtures for vinabatch tests.

Provides tiny receptor/ligand PDBQT files, a file-writing fake docking
engine whose calls are observable across fork boundaries, and an
in-process threaded stand-in for the MPI fabric.
"""

import os
import threading
import time
from pathlib import Path

import pytest

from vinabatch.config import RunSettings
from vinabatch.executor import ReceptorTemplate
from vinabatch.jobsource import TERMINATION

RECEPTOR_PDBQT = """\
ATOM      1  N   ALA A   1      11.104   6.134  -6.504  1.00  0.00     0.245 N
ATOM      2  CA  ALA A   1      11.639   6.071  -5.147  1.00  0.00     0.151 C
ATOM      3  C   ALA A   1      13.140   5.861  -5.095  1.00  0.00     0.241 C
"""

LIGAND_PDBQT = """\
ROOT
HETATM    1  C1  LIG A   1       0.000   0.000   0.000  1.00  0.00     0.000 C
HETATM    2  O1  LIG A   1       1.200   0.000   0.000  1.00  0.00    -0.400 OA
ENDROOT
TORSDOF 0
"""

FAKE_VINA = """\
#!/bin/sh
while [ $# -gt 0 ]; do
  case "$1" in
    --out) out="$2"; shift;;
    --ligand) lig="$2"; shift;;
  esac
  shift
done
case "${lig##*/}" in
  *bad*) echo "engine crashed" >&2; exit 3;;
esac
[ -n "$out" ] && echo "MODEL 1" > "$out"
echo "   1        -7.1      0.000      0.000"
"""


@pytest.fixture
def receptor_file(tmp_path):
    path = tmp_path / "receptor.pdbqt"
    path.write_text(RECEPTOR_PDBQT)
    return path


@pytest.fixture
def template(receptor_file):
    return ReceptorTemplate.load(receptor_file)


@pytest.fixture
def make_ligands(tmp_path):
    """Write ligand files and a job file listing them; returns the job file path."""
    def _make(names, job_name="jobs.txt", trailer="\n"):
        lig_dir = tmp_path / "ligands"
        lig_dir.mkdir(exist_ok=True)
        paths = []
        for name in names:
            p = lig_dir / name
            p.write_text(LIGAND_PDBQT)
            paths.append(str(p))
        job_file = tmp_path / job_name
        job_file.write_text("\n".join(paths) + trailer)
        return job_file
    return _make


@pytest.fixture
def settings():
    return RunSettings(
        center_x=0.0, center_y=0.0, center_z=0.0,
        size_x=20.0, size_y=20.0, size_z=20.0,
        cpu=1, quiet=True,
    )


@pytest.fixture
def fake_vina(tmp_path):
    path = tmp_path / "fake_vina.sh"
    path.write_text(FAKE_VINA)
    path.chmod(0o755)
    return path


class RecordingEngine:
    """
    Fake engine that leaves evidence on disk, so calls made inside forked
    children are visible to the test process.

    - attempts/<ligand>_<seed> is touched for every call
    - alive/<pid>_<thread> exists while the call is running
    - peaks/<pid>_<thread> holds how many calls were alive when this one looked
    Ligands whose file name contains "bad" raise instead of writing output.
    """

    def __init__(self, root: Path, delay: float = 0.0):
        self.root = Path(root)
        self.delay = delay
        for sub in ("attempts", "alive", "peaks"):
            (self.root / sub).mkdir(parents=True, exist_ok=True)
        self.models = []

    def __call__(self, model, output, seed, settings):
        self.models.append(model)
        ligand = model.ligands[-1]
        (self.root / "attempts" / f"{ligand.path.name}_{seed}").touch()

        worker_id = f"{os.getpid()}_{threading.get_ident()}"
        marker = self.root / "alive" / worker_id
        marker.touch()
        try:
            time.sleep(self.delay)
            alive = len(list((self.root / "alive").iterdir()))
            (self.root / "peaks" / worker_id).write_text(str(alive))
        finally:
            marker.unlink(missing_ok=True)

        if "bad" in ligand.path.name:
            # Partial output first, to check the executor cleans it up.
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text("partial")
            raise RuntimeError(f"cannot dock {ligand.path.name}")
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(f"MODEL 1 seed={seed}\n")

    def attempts(self):
        return sorted(p.name for p in (self.root / "attempts").iterdir())

    def peak(self):
        peaks = [int(p.read_text()) for p in (self.root / "peaks").iterdir()]
        return max(peaks) if peaks else 0


@pytest.fixture
def make_engine(tmp_path):
    def _make(delay=0.0):
        return RecordingEngine(tmp_path / "engine", delay=delay)
    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


class _Hub:
    def __init__(self, size):
        self.size = size
        self.cond = threading.Condition()
        self.requests = []  # (rank, processed) not yet received by the governor
        self.replies = {rank: [] for rank in range(1, size)}
        self.sent = []      # (rank, descriptor) in send order


class ThreadFabric:
    """Same interface as vinabatch.fabric.MPIFabric, backed by shared lists."""

    TIMEOUT = 10.0

    def __init__(self, hub, rank):
        self.hub = hub
        self.rank = rank
        self.size = hub.size

    def _wait(self, predicate):
        if not self.hub.cond.wait_for(predicate, timeout=self.TIMEOUT):
            raise TimeoutError(f"rank {self.rank} blocked for {self.TIMEOUT}s")

    def wait_for_request(self, source=None):
        def match():
            for i, (rank, _count) in enumerate(self.hub.requests):
                if source is None or rank == source:
                    return i
            return None

        with self.hub.cond:
            self._wait(lambda: match() is not None)
            return self.hub.requests.pop(match())

    def dispatch(self, rank, desc):
        with self.hub.cond:
            self.hub.sent.append((rank, desc))
            self.hub.replies[rank].append(desc)
            self.hub.cond.notify_all()

    def terminate(self, rank):
        self.dispatch(rank, TERMINATION)

    def drain(self):
        pass

    def request_work(self, processed):
        with self.hub.cond:
            self.hub.requests.append((self.rank, processed))
            self.hub.cond.notify_all()

    def receive_assignment(self):
        with self.hub.cond:
            self._wait(lambda: bool(self.hub.replies[self.rank]))
            return self.hub.replies[self.rank].pop(0)


@pytest.fixture
def fabric_factory():
    """Returns make(size) -> (hub, [fabric for rank 0..size-1])."""
    def _make(size):
        hub = _Hub(size)
        return hub, [ThreadFabric(hub, rank) for rank in range(size)]
    return _make
