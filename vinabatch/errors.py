"""
errors.py

Exception types and process exit codes for batch docking runs.

Per-ligand problems (StructureError, EngineError) are caught at the
executor boundary and never leave it. Everything else means the run
cannot proceed and is mapped to an exit code by vinabatch.run.main().
"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_FORK_FAILED = 10
EXIT_TOO_FEW_RANKS = 255


class BatchError(Exception):
    """Base class for all vinabatch errors."""

    exit_code = EXIT_FAILURE


class UsageError(BatchError):
    """Invalid or incomplete run configuration."""


class JobFileError(BatchError):
    """Job file missing or unreadable."""


class StructureError(BatchError):
    """Receptor or ligand file could not be parsed."""


class EngineError(BatchError):
    """The docking engine failed for one ligand."""


class ForkError(BatchError):
    """os.fork() failed while growing the local pool."""

    exit_code = EXIT_FORK_FAILED


class TooFewRanksError(BatchError):
    """MPI mode needs a governor plus at least one worker."""

    exit_code = EXIT_TOO_FEW_RANKS
