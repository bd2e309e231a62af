"""
Base configuration classes and utilities for bigPRS.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Annotated, Any, Dict
import logging

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("bigPRS")


def config_logger(log_dir: Path = Path("logs")):
    logger = logging.getLogger("bigPRS")
    # clean up existing handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(logging.DEBUG)

    # Console: INFO and above
    rich_handler = RichHandler(
        console=Console(),
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(logging.INFO)
    rich_handler.setFormatter(
        logging.Formatter("{levelname:.5s} | {name} - {message}", style="{")
    )
    logger.addHandler(rich_handler)

    # File: DEBUG and above, one file per run
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"bigPRS_{timestamp}.log"

    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "[{asctime}] {levelname:.5s} | {name}:{funcName}:{lineno} - {message}",
            style="{"
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging configured - console: INFO+, file: DEBUG+ -> {log_file}")
    return logger


def ensure_path_exists(func):
    """Decorator to ensure path exists when accessing properties."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        result = func(*args, **kwargs)
        if isinstance(result, Path):
            if result.suffix:
                result.parent.mkdir(parents=True, exist_ok=True, mode=0o755)
            else:  # It's a directory path
                result.mkdir(parents=True, exist_ok=True, mode=0o755)
        return result
    return wrapper


def write_metadata(path: Path, metadata: Dict[str, Any]):
    """Dump run metadata/diagnostics to YAML."""
    with open(path, "w") as f:
        yaml.safe_dump(metadata, f, sort_keys=False)
    logger.info(f"Metadata saved to {path}")


def read_metadata(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f)


@dataclass
class ConfigWithAutoPaths:
    """Base configuration class with automatic path generation."""

    # Required from parent
    workdir: Annotated[Path, typer.Option(
        help="Path to the working directory",
        exists=True,
        file_okay=False,
        dir_okay=True,
        resolve_path=True
    )]

    project_name: Annotated[str, typer.Option(
        help="Name of the project"
    )]

    def __post_init__(self):
        if self.workdir is None:
            raise ValueError('workdir must be provided.')
        self.project_dir = Path(self.workdir) / self.project_name

    def to_dict_with_paths_as_strings(self) -> Dict[str, Any]:
        """Config as a dictionary with Path objects (also inside lists and dicts) converted to strings."""
        config_dict = asdict(self)
        for key, value in config_dict.items():
            if isinstance(value, Path):
                config_dict[key] = str(value)
            elif isinstance(value, dict):
                config_dict[key] = {k: str(v) if isinstance(v, Path) else v for k, v in value.items()}
            elif isinstance(value, (list, tuple)):
                config_dict[key] = [str(v) if isinstance(v, Path) else v for v in value]
        return config_dict

    def show_config(self, title: str):
        logger.info(f"{title}:\n" + yaml.safe_dump(self.to_dict_with_paths_as_strings(), sort_keys=False))

    ## ---- Matching paths

    @property
    @ensure_path_exists
    def match_dir(self) -> Path:
        return self.project_dir / "match"

    @property
    def matched_sumstats_path(self) -> Path:
        """Matched summary statistics, in panel order"""
        return self.match_dir / f"{self.project_name}_matched.parquet"

    @property
    def match_metadata_path(self) -> Path:
        return self.match_dir / "metadata.yaml"

    ## ---- LD paths

    @property
    @ensure_path_exists
    def ld_dir(self) -> Path:
        return self.project_dir / "ld"

    @property
    def ld_store_path(self) -> Path:
        """SparseBandedMatrix store directory"""
        return self.ld_dir / f"{self.project_name}_corr"

    @property
    def ld_metadata_path(self) -> Path:
        return self.ld_dir / "metadata.yaml"

    ## ---- Clumping paths

    @property
    @ensure_path_exists
    def clump_dir(self) -> Path:
        return self.project_dir / "clump"

    @property
    def clumped_variants_path(self) -> Path:
        return self.clump_dir / f"{self.project_name}_clumped.tsv"

    ## ---- LDpred2 paths

    @property
    @ensure_path_exists
    def ldpred_dir(self) -> Path:
        return self.project_dir / "ldpred2"

    def get_weights_path(self, method: str) -> Path:
        """Effect sizes of one LDpred2 method ('inf', 'grid' or 'auto')"""
        return self.ldpred_dir / f"{self.project_name}_{method}_weights.tsv"

    def get_ldpred_metadata_path(self, method: str) -> Path:
        return self.ldpred_dir / f"{method}_metadata.yaml"

    @property
    def grid_params_path(self) -> Path:
        return self.ldpred_dir / f"{self.project_name}_grid_params.tsv"

    @property
    def auto_chains_path(self) -> Path:
        return self.ldpred_dir / f"{self.project_name}_auto_chains.tsv"

    ## ---- Scoring paths

    @property
    @ensure_path_exists
    def score_dir(self) -> Path:
        return self.project_dir / "score"

    def get_score_path(self, method: str) -> Path:
        return self.score_dir / f"{self.project_name}_{method}_scores.tsv"
