"""
config.py

Run configuration: defaults, config file (YAML or Vina-style key = value),
and command line, in increasing order of precedence.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .errors import UsageError

# Keys that name files; relative values resolve against the config file's directory.
PATH_KEYS = ("receptor", "ligand", "out", "log", "job_file", "batch_out")

# Vina / batch-mode spellings accepted in config files and mapped to field names.
KEY_ALIASES = {
    "jobfile": "job_file",
    "batchoutdir": "batch_out",
    "output_directory": "batch_out",
}

TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off", ""}

MAX_RECOMMENDED_VOLUME = 27e3  # Angstrom^3

# Vina defaults; only weights that differ are passed to the engine.
DEFAULT_WEIGHTS = {
    "weight_gauss1": -0.035579,
    "weight_gauss2": -0.005156,
    "weight_repulsion": 0.840245,
    "weight_hydrophobic": -0.035069,
    "weight_hydrogen": -0.587439,
    "weight_rot": 0.05846,
}


@dataclass
class RunSettings:
    receptor: Optional[Path] = None
    ligand: Optional[Path] = None
    out: Optional[Path] = None
    log: Optional[Path] = None

    center_x: Optional[float] = None
    center_y: Optional[float] = None
    center_z: Optional[float] = None
    size_x: Optional[float] = None
    size_y: Optional[float] = None
    size_z: Optional[float] = None

    exhaustiveness: int = 8
    num_modes: int = 9
    energy_range: float = 3.0
    cpu: int = 0
    seed: Optional[int] = None
    scoring: str = "vina"
    vina_bin: str = "vina"

    score_only: bool = False
    local_only: bool = False
    randomize_only: bool = False
    weight_gauss1: float = DEFAULT_WEIGHTS["weight_gauss1"]
    weight_gauss2: float = DEFAULT_WEIGHTS["weight_gauss2"]
    weight_repulsion: float = DEFAULT_WEIGHTS["weight_repulsion"]
    weight_hydrophobic: float = DEFAULT_WEIGHTS["weight_hydrophobic"]
    weight_hydrogen: float = DEFAULT_WEIGHTS["weight_hydrogen"]
    weight_rot: float = DEFAULT_WEIGHTS["weight_rot"]

    batch: bool = False
    job_file: Optional[Path] = None
    batch_out: Optional[Path] = None
    fork_parallelism: bool = False
    forknbr: int = 1
    mpi: bool = False

    progress: bool = False
    quiet: bool = False

    @property
    def center(self):
        return (self.center_x, self.center_y, self.center_z)

    @property
    def size(self):
        return (self.size_x, self.size_y, self.size_z)

    @property
    def cpus(self) -> int:
        if self.cpu < 1:
            return os.cpu_count() or 1
        return self.cpu

    def validate(self) -> "RunSettings":
        """Raise UsageError for configurations that cannot run."""
        if self.receptor is None:
            raise UsageError("Missing receptor")
        if self.batch:
            if self.job_file is None or self.batch_out is None:
                raise UsageError("Batch mode needs a job file (--jobfile) and an output dir (--batchoutdir)")
            if self.fork_parallelism and self.mpi:
                raise UsageError("--fork-parallelism and --mpi are mutually exclusive")
            if self.forknbr < 1:
                raise UsageError("forknbr must be 1 or greater")
        elif self.ligand is None:
            raise UsageError("Missing ligand")
        elif self.fork_parallelism or self.mpi:
            raise UsageError("--fork-parallelism and --mpi need --batch")

        if self.exhaustiveness < 1:
            raise UsageError("exhaustiveness must be 1 or greater")
        if self.num_modes < 1:
            raise UsageError("num_modes must be 1 or greater")

        # --score_only rescores the input pose and needs no search space.
        if self.score_only:
            return self
        missing = [n for n in ("center_x", "center_y", "center_z", "size_x", "size_y", "size_z")
                   if getattr(self, n) is None]
        if missing:
            raise UsageError(f"Search space not fully specified, missing: {', '.join(missing)}")
        if min(self.size) <= 0:
            raise UsageError("Search space dimensions should be positive")

        volume = self.size_x * self.size_y * self.size_z
        if volume > MAX_RECOMMENDED_VOLUME and not self.quiet:
            print(f"WARNING: The search space volume > {MAX_RECOMMENDED_VOLUME:.0f} Angstrom^3 ({volume:.0f})")
        return self

    @property
    def has_box(self) -> bool:
        return None not in self.center + self.size

    def custom_weights(self) -> dict:
        """Scoring weights that differ from the Vina defaults."""
        return {k: getattr(self, k) for k, v in DEFAULT_WEIGHTS.items() if getattr(self, k) != v}


FIELD_TYPES = {f.name: f.type for f in fields(RunSettings)}


def normalize_key(key: str) -> str:
    key = key.strip().replace("-", "_")
    return KEY_ALIASES.get(key, key)


def coerce(key: str, value):
    """Convert a raw config value to the type of the matching RunSettings field."""
    if key not in FIELD_TYPES:
        raise UsageError(f"Unknown configuration key: {key}")
    if value is None:
        return None
    ftype = FIELD_TYPES[key]
    try:
        if key in PATH_KEYS:
            return Path(value)
        if ftype is bool:
            if isinstance(value, bool):
                return value
            s = str(value).strip().lower()
            if s in TRUE_STRINGS:
                return True
            if s in FALSE_STRINGS:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if ftype in (int, Optional[int]):
            return int(value)
        if ftype in (float, Optional[float]):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise UsageError(f"Bad value for {key}: {e}") from e


def _read_vina_config(cfg_path: Path) -> dict:
    raw = {}
    with open(cfg_path) as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if not line or "=" not in line:
                continue
            k, v = [x.strip() for x in line.split("=", 1)]
            raw[k] = v
    return raw


def load_config(config_path) -> dict:
    """
    Load a config file into a dict of RunSettings field values.

    YAML (.yaml/.yml) must hold a mapping; anything else is read as a Vina
    config (key = value per line). Relative paths resolve against the config
    file's directory.
    """
    cfg_path = Path(config_path)
    if not cfg_path.exists():
        raise UsageError(f"Config not found: {cfg_path}")

    if cfg_path.suffix in (".yaml", ".yml"):
        with open(cfg_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise UsageError(f"Config must be a mapping: {cfg_path}")
    else:
        raw = _read_vina_config(cfg_path)

    values = {}
    for k, v in raw.items():
        key = normalize_key(str(k))
        val = coerce(key, v)
        if key in PATH_KEYS and val is not None and not val.is_absolute():
            val = cfg_path.parent / val
        values[key] = val
    return values


def build_settings(config_path=None, **overrides) -> RunSettings:
    """Merge defaults, config file and explicit overrides (None means unset)."""
    values = load_config(config_path) if config_path else {}
    for k, v in overrides.items():
        if v is None:
            continue
        key = normalize_key(k)
        values[key] = coerce(key, v)
    return RunSettings(**values)
