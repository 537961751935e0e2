#!/usr/bin/env python3
"""
run.py

Entry point for single-ligand and batch docking.

Modes (exactly one per run):
  1. Single run: dock --ligand against --receptor
  2. Batch, sequential: every ligand of --jobfile, one after the other
  3. Batch, fork pool: one child process per ligand, at most --forknbr alive
  4. Batch, MPI: rank 0 hands out ligands, ranks 1..N-1 dock them

Usage:
    # Single ligand
    python -m vinabatch.run --config box.txt --receptor rec.pdbqt --ligand lig.pdbqt

    # Batch on 8 local processes
    python -m vinabatch.run --config box.txt --batch --jobfile ligands.txt \
        --batchoutdir out --fork-parallelism --forknbr 8

    # Batch over MPI
    mpirun -np 33 python -m vinabatch.run --config box.txt --batch \
        --jobfile ligands.txt --batchoutdir out --mpi
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from .config import RunSettings, build_settings
from .distributed import run_governor, run_worker
from .errors import EXIT_FAILURE, EXIT_OK, BatchError, TooFewRanksError
from .executor import JobExecutor, ReceptorTemplate, default_output_path
from .jobsource import JobSource
from .pool import LocalForkPool, run_sequential
from .seeds import SeedGenerator, auto_seed


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Batch docking of a ligand list against one receptor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sequential batch
  python -m vinabatch.run --config box.txt --batch --jobfile ligands.txt --batchoutdir out

  # Fork pool, 4 ligands at a time
  python -m vinabatch.run --config box.txt --batch --jobfile ligands.txt --batchoutdir out \\
      --fork-parallelism --forknbr 4
""",
    )
    # Every option defaults to None so that unset flags never override the config file.
    inputs = parser.add_argument_group("Input")
    inputs.add_argument("--config", type=Path,
                        help="Config file (YAML, or Vina-style key = value)")
    inputs.add_argument("--receptor", type=Path, help="Rigid receptor PDBQT")
    inputs.add_argument("--ligand", type=Path, help="Ligand PDBQT (single run)")
    inputs.add_argument("--out", type=Path, help="Output PDBQT (single run)")
    inputs.add_argument("--log", type=Path, help="Engine log file (single run; batch runs log per ligand)")

    box = parser.add_argument_group("Search space")
    for axis in ("x", "y", "z"):
        box.add_argument(f"--center_{axis}", type=float, help=f"{axis} coordinate of the box center")
    for axis in ("x", "y", "z"):
        box.add_argument(f"--size_{axis}", type=float, help=f"Box size in the {axis} dimension (Angstrom)")

    adv = parser.add_argument_group("Docking")
    adv.add_argument("--exhaustiveness", type=int, help="Search exhaustiveness (default: 8)")
    adv.add_argument("--num_modes", type=int, help="Maximum number of binding modes (default: 9)")
    adv.add_argument("--energy_range", type=float, help="Max energy difference to best mode, kcal/mol (default: 3)")
    adv.add_argument("--cpu", type=int, help="CPUs per docking run (default: autodetect)")
    adv.add_argument("--seed", type=int, help="Explicit random seed")
    adv.add_argument("--scoring", help='Scoring function (default: "vina")')
    adv.add_argument("--vina_bin", help='Docking binary (default: "vina")')

    modes = parser.add_argument_group("Advanced (passed to the engine)")
    modes.add_argument("--score_only", action="store_true", default=None,
                       help="Score the input pose only; search space can be omitted")
    modes.add_argument("--local_only", action="store_true", default=None, help="Local search only")
    modes.add_argument("--randomize_only", action="store_true", default=None,
                       help="Randomize input, attempting to avoid clashes")
    for term in ("gauss1", "gauss2", "repulsion", "hydrophobic", "hydrogen", "rot"):
        modes.add_argument(f"--weight_{term}", type=float, help=f"{term} weight")

    batch = parser.add_argument_group("Batch mode")
    batch.add_argument("--batch", action="store_true", default=None,
                       help="Dock every ligand of --jobfile without reloading the receptor")
    batch.add_argument("--jobfile", type=Path, help="Job file, one ligand path per line")
    batch.add_argument("--batchoutdir", type=Path, help="Batch output directory")
    batch.add_argument("--fork-parallelism", action="store_true", default=None,
                       help="Run each ligand in a forked child process")
    batch.add_argument("--forknbr", type=int,
                       help="Max concurrent children with --fork-parallelism (default: 1)")
    batch.add_argument("--mpi", action="store_true", default=None,
                       help="Distribute ligands over MPI ranks (not compatible with forks)")

    misc = parser.add_argument_group("Output")
    misc.add_argument("--progress", action="store_true", default=None,
                      help="Show a progress bar in local batch modes")
    misc.add_argument("--quiet", action="store_true", default=None,
                      help="Less verbose output")
    return parser.parse_args(argv)


def settings_from_args(args) -> RunSettings:
    overrides = {k: v for k, v in vars(args).items() if k != "config"}
    return build_settings(args.config, **overrides)


def run_single(settings: RunSettings, engine=None) -> int:
    seed = settings.seed if settings.seed is not None else auto_seed()
    output = settings.out or default_output_path(settings.ligand)
    if not settings.quiet:
        print(f"Using random seed: {seed}")
        print(f"Output will be {output}")

    template = ReceptorTemplate.load(settings.receptor)
    executor = JobExecutor(template, settings, engine=engine, verbose=not settings.quiet)
    result = executor.run(str(settings.ligand), seed, index=0, output=output)
    return EXIT_OK if result["success"] else EXIT_FAILURE


def run_batch_local(settings: RunSettings, engine=None) -> int:
    verbose = not settings.quiet
    seeds = SeedGenerator(settings.seed)
    if verbose:
        mode = f"fork pool, {settings.forknbr} processes" if settings.fork_parallelism else "sequential"
        print(f"\n{'=' * 60}")
        print(f"BATCH MODE ({mode})")
        print(f"Job file: {settings.job_file}")
        print(f"Output:   {settings.batch_out}")
        print(f"Using random seed: {seeds.seed}")
        print(f"{'=' * 60}", flush=True)
        if settings.log is not None:
            print(f"Note: --log is ignored in batch mode, engine logs go to {Path(settings.batch_out) / 'log'}")

    Path(settings.batch_out).mkdir(parents=True, exist_ok=True)
    # Loaded once here; forked children inherit it and work on their own copy.
    template = ReceptorTemplate.load(settings.receptor)
    executor = JobExecutor(template, settings, settings.batch_out, engine=engine, verbose=verbose)

    with JobSource(settings.job_file) as source:
        if settings.fork_parallelism:
            pool = LocalForkPool(executor, settings.forknbr, seeds,
                                 progress=settings.progress, verbose=verbose)
            pool.run(source)
        else:
            run_sequential(source, executor, seeds, progress=settings.progress, verbose=verbose)
    return EXIT_OK


def run_batch_mpi(settings: RunSettings, engine=None, comm=None) -> int:
    from .fabric import MPIFabric

    fabric = MPIFabric(comm)
    if fabric.size < 2:
        raise TooFewRanksError(
            "Cannot use MPI if there is only one rank available. "
            "Use fork-based parallelism instead."
        )

    verbose = not settings.quiet
    try:
        Path(settings.batch_out).mkdir(parents=True, exist_ok=True)
        if fabric.rank == 0:
            seeds = SeedGenerator(settings.seed)
            if verbose:
                print(f"[governor] Using random seed: {seeds.seed}", flush=True)
            with JobSource(settings.job_file, blank_ends=True) as source:
                run_governor(fabric, source, seeds, verbose=verbose)
        else:
            template = ReceptorTemplate.load(settings.receptor)
            executor = JobExecutor(template, settings, settings.batch_out,
                                   engine=engine, verbose=False)
            run_worker(fabric, executor, settings.job_file, verbose=verbose)
    except BatchError as e:
        # A rank that cannot go on would leave its peers blocked forever.
        print(f"ERROR: [rank {fabric.rank}] {e}", file=sys.stderr, flush=True)
        fabric.comm.Abort(e.exit_code)
    return EXIT_OK


def run(settings: RunSettings, engine=None) -> int:
    if not settings.batch:
        return run_single(settings, engine=engine)
    if settings.mpi:
        return run_batch_mpi(settings, engine=engine)
    return run_batch_local(settings, engine=engine)


def main(argv: Optional[list] = None):
    args = parse_args(argv)
    try:
        settings = settings_from_args(args).validate()
        code = run(settings)
    except BatchError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        code = e.exit_code
    sys.exit(code)


if __name__ == "__main__":
    main()
