"""
executor.py

Runs one docking job: receptor template + one ligand -> one output file.

JobExecutor.run() is the only place per-ligand failures are handled.
Whatever goes wrong for a ligand (missing file, bad PDBQT, engine crash)
is turned into a failed result dict; nothing propagates to the pool,
governor or worker loops.
"""

import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import RunSettings
from .errors import EngineError, StructureError

BATCH_OUTPUT_SUFFIX = ".out.pdbqt"
ATOM_RECORDS = ("ATOM", "HETATM")


def _read_lines(path: Path) -> Tuple[str, ...]:
    with open(path) as f:
        lines = [line.rstrip("\n") for line in f]
    return tuple(lines)


@dataclass(frozen=True)
class Ligand:
    path: Path
    lines: Tuple[str, ...]


def parse_ligand(path) -> Ligand:
    """Read a ligand PDBQT; it needs a ROOT record and at least one atom."""
    path = Path(path)
    try:
        lines = _read_lines(path)
    except OSError as e:
        raise StructureError(f"Cannot read ligand {path}: {e}") from e
    if not any(line.startswith(ATOM_RECORDS) for line in lines):
        raise StructureError(f"No atoms in ligand {path}")
    if not any(line.startswith("ROOT") for line in lines):
        raise StructureError(f"No ROOT record in ligand {path}")
    return Ligand(path=path, lines=lines)


@dataclass
class DockingModel:
    """Working copy of the receptor with the ligand(s) for one job appended."""
    receptor_path: Path
    receptor_lines: Tuple[str, ...]
    ligands: List[Ligand] = field(default_factory=list)

    def append(self, ligand: Ligand):
        self.ligands.append(ligand)


@dataclass(frozen=True)
class ReceptorTemplate:
    """Parsed, ligand-free receptor reused by every job of a run."""
    path: Path
    lines: Tuple[str, ...]

    @classmethod
    def load(cls, path) -> "ReceptorTemplate":
        path = Path(path)
        try:
            lines = _read_lines(path)
        except OSError as e:
            raise StructureError(f"Cannot read receptor {path}: {e}") from e
        if not any(line.startswith(ATOM_RECORDS) for line in lines):
            raise StructureError(f"No atoms in receptor {path}")
        return cls(path=path.resolve(), lines=lines)

    def copy(self) -> DockingModel:
        return DockingModel(receptor_path=self.path, receptor_lines=self.lines)


def base_filename(ligand_line: str) -> str:
    """Text after the last '/' or '\\' of a job file line."""
    cut = max(ligand_line.rfind("/"), ligand_line.rfind("\\"))
    return ligand_line[cut + 1:]


def batch_output_path(ligand_line: str, out_dir) -> Path:
    return Path(out_dir) / (base_filename(ligand_line) + BATCH_OUTPUT_SUFFIX)


def default_output_path(ligand) -> Path:
    ligand = Path(ligand)
    return ligand.with_name(f"{ligand.stem}_out.pdbqt")


class VinaEngine:
    """Docks a model by running an AutoDock Vina compatible binary."""

    def __init__(self, vina_bin: str = "vina"):
        self.vina_bin = vina_bin

    def command(self, model: DockingModel, output: Path, seed: int, settings: RunSettings) -> list:
        cmd = [self.vina_bin, "--receptor", str(model.receptor_path)]
        for lig in model.ligands:
            cmd.extend(["--ligand", str(lig.path.resolve())])
        if not settings.score_only:
            cmd.extend(["--out", str(output.resolve())])
        if settings.has_box:
            for axis, c, s in zip("xyz", settings.center, settings.size):
                cmd.extend([f"--center_{axis}", str(c), f"--size_{axis}", str(s)])
        cmd.extend([
            "--exhaustiveness", str(settings.exhaustiveness),
            "--num_modes", str(settings.num_modes),
            "--energy_range", str(settings.energy_range),
            "--cpu", str(settings.cpus),
            "--scoring", settings.scoring,
            "--seed", str(seed),
        ])
        for flag in ("score_only", "local_only", "randomize_only"):
            if getattr(settings, flag):
                cmd.append(f"--{flag}")
        for key, value in settings.custom_weights().items():
            cmd.extend([f"--{key}", str(value)])
        return cmd

    def log_path(self, model: DockingModel, output: Path, settings: RunSettings) -> Path:
        # --log names one file, so it only applies to single runs.
        if settings.log is not None and not settings.batch:
            return Path(settings.log)
        return output.parent / "log" / f"{model.ligands[-1].path.stem}.log"

    def __call__(self, model: DockingModel, output: Path, seed: int, settings: RunSettings):
        output.parent.mkdir(parents=True, exist_ok=True)
        log_file = self.log_path(model, output, settings)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        cmd = self.command(model, output, seed, settings)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise EngineError(f"Cannot run {self.vina_bin}: {e}") from e

        with open(log_file, "w") as f:
            f.write(f"Command: {' '.join(cmd)}\n")
            f.write(f"Exit code: {result.returncode}\n")
            f.write(f"\nStdout:\n{result.stdout}\n")
            if result.stderr:
                f.write(f"\nStderr:\n{result.stderr}\n")

        if result.returncode != 0:
            raise EngineError(f"{self.vina_bin} exited with code {result.returncode}")
        if not settings.score_only and not output.exists():
            raise EngineError("Docking failed - no output file created")


Engine = Callable[[DockingModel, Path, int, RunSettings], None]


class JobExecutor:
    """
    Failure-isolating wrapper around the docking engine.

    Args:
        template: Receptor template shared by all jobs (never mutated)
        settings: Search box and engine parameters
        out_dir: Batch output directory (None for single runs)
        engine: Callable(model, output, seed, settings); VinaEngine by default
        verbose: Print one line per job
    """

    def __init__(self, template: ReceptorTemplate, settings: RunSettings,
                 out_dir=None, engine: Optional[Engine] = None, verbose: bool = True):
        self.template = template
        self.settings = settings
        self.out_dir = Path(out_dir) if out_dir is not None else None
        self.engine = engine if engine is not None else VinaEngine(settings.vina_bin)
        self.verbose = verbose

    def output_for(self, ligand_line: str) -> Path:
        if self.out_dir is None:
            return default_output_path(ligand_line)
        return batch_output_path(ligand_line, self.out_dir)

    def run(self, ligand_line: str, seed: int, index: Optional[int] = None,
            output: Optional[Path] = None) -> dict:
        output = Path(output) if output is not None else self.output_for(ligand_line)
        name = base_filename(ligand_line)
        if self.verbose:
            print(f"Doing ligand number {index} ({name}) -> {output}", flush=True)

        start = time.time()
        result = {
            "index": index,
            "ligand": ligand_line,
            "output_file": str(output),
            "seed": seed,
        }
        try:
            model = self.template.copy()
            model.append(parse_ligand(ligand_line))
            self.engine(model, output, seed, self.settings)
        except Exception as e:
            # A failed job must not leave a (partial) result behind.
            output.unlink(missing_ok=True)
            print(f"ERROR: ligand {index} ({name}) failed, moving on: {e}", file=sys.stderr, flush=True)
            return {**result, "success": False, "error": str(e),
                    "runtime_s": round(time.time() - start, 2)}

        return {**result, "success": True, "error": "",
                "runtime_s": round(time.time() - start, 2)}
