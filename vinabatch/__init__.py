"""
vinabatch - batch docking of a ligand list against one receptor.

Jobs come from a job file (one ligand path per line) and run either
sequentially, on a bounded pool of forked processes, or over MPI with a
pull-based governor/worker protocol.

Usage:
    python -m vinabatch.run --config box.txt --batch --jobfile ligands.txt \
        --batchoutdir out --fork-parallelism --forknbr 8
"""

from .jobsource import JobDescriptor, JobSource, TERMINATION, read_line_at
from .executor import JobExecutor, ReceptorTemplate, VinaEngine
from .pool import LocalForkPool, run_sequential
from .distributed import run_governor, run_worker
from .seeds import SeedGenerator

__all__ = [
    'JobDescriptor',
    'JobSource',
    'TERMINATION',
    'read_line_at',
    'JobExecutor',
    'ReceptorTemplate',
    'VinaEngine',
    'LocalForkPool',
    'run_sequential',
    'run_governor',
    'run_worker',
    'SeedGenerator',
]
