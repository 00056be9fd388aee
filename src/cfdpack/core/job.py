# Copyright 2025 Allard Peper (Dragon Ace / DragonAceNL)
# Licensed under the Apache License, Version 2.0 (see LICENSE).
# This file is part of cfdpack.

"""
Conversion job files.

A job names the input snapshots (in time order), the output container
and the conversion options, so a batch can be re-run without a long
command line. Jobs are JSON or YAML documents:

    inputs:
      - run/step_000.vtk
      - run/step_001.vtk
    output: run/flow.c4a
    options:
      version: 2
      slice: true
      budget: 60000

Relative input and output paths are resolved against the job file's
directory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union
import json
import logging

import yaml

from .combiner import PROBE_MODES
from .container import SUPPORTED_VERSIONS
from .slicer import DEFAULT_BUDGET

logger = logging.getLogger(__name__)


@dataclass
class ConvertOptions:
    """
    Options for one conversion run.

    Attributes:
        version: Container version to write (1 or 2)
        slice: Whether to slice submeshes over the vertex budget
        budget: Maximum vertices per submesh when slicing
        probe: Geometry check across time steps ("all" or "random")
        seed: Seed for the random probe
        workers: Number of threads loading files
    """
    version: int = 2
    slice: bool = False
    budget: int = DEFAULT_BUDGET
    probe: str = "all"
    seed: Optional[int] = None
    workers: int = 1

    @classmethod
    def from_dict(cls, data: dict) -> "ConvertOptions":
        defaults = cls()
        return cls(
            version=data.get("version", defaults.version),
            slice=data.get("slice", defaults.slice),
            budget=data.get("budget", defaults.budget),
            probe=data.get("probe", defaults.probe),
            seed=data.get("seed", defaults.seed),
            workers=data.get("workers", defaults.workers),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "slice": self.slice,
            "budget": self.budget,
            "probe": self.probe,
            "seed": self.seed,
            "workers": self.workers,
        }

    def validate(self) -> list[str]:
        """
        Check option values.

        Returns:
            List of problems (empty if valid)
        """
        errors = []
        if self.version not in SUPPORTED_VERSIONS:
            errors.append(f"version must be one of {SUPPORTED_VERSIONS}, got {self.version!r}")
        if not isinstance(self.slice, bool):
            errors.append(f"slice must be true or false, got {self.slice!r}")
        if not isinstance(self.budget, int) or self.budget < 3:
            errors.append(f"budget must be an integer >= 3, got {self.budget!r}")
        if self.probe not in PROBE_MODES:
            errors.append(f"probe must be one of {PROBE_MODES}, got {self.probe!r}")
        if self.seed is not None and not isinstance(self.seed, int):
            errors.append(f"seed must be an integer, got {self.seed!r}")
        if not isinstance(self.workers, int) or self.workers < 1:
            errors.append(f"workers must be an integer >= 1, got {self.workers!r}")
        return errors


@dataclass
class ConversionJob:
    """Inputs, output and options of one conversion."""
    inputs: list[Path] = field(default_factory=list)
    output: Optional[Path] = None
    options: ConvertOptions = field(default_factory=ConvertOptions)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> "ConversionJob":
        """Create from a dictionary; relative paths resolve against ``base_dir``."""
        def resolve(value) -> Path:
            path = Path(value)
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            return path

        output = data.get("output")
        return cls(
            inputs=[resolve(p) for p in data.get("inputs", [])],
            output=resolve(output) if output else None,
            options=ConvertOptions.from_dict(data.get("options") or {}),
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "ConversionJob":
        """Load from JSON file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Job file must contain a mapping: {path}")
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ConversionJob":
        """Load from YAML file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Job file must contain a mapping: {path}")
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ConversionJob":
        """
        Load and validate a job file, auto-detecting format from extension.

        Supports .json and .yaml/.yml files.

        Raises:
            FileNotFoundError: If the job file doesn't exist
            ValueError: If the job is invalid
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Job file not found: {path}")

        suffix = path.suffix.lower()

        if suffix == ".json":
            job = cls.from_json(path)
        elif suffix in (".yaml", ".yml"):
            job = cls.from_yaml(path)
        else:
            # Try JSON first, then YAML
            try:
                job = cls.from_json(path)
            except json.JSONDecodeError:
                job = cls.from_yaml(path)

        errors = job.validate()
        if errors:
            raise ValueError(f"Invalid job {path.name}: " + "; ".join(errors))
        logger.debug(f"Loaded job {path}: {len(job.inputs)} inputs -> {job.output}")
        return job

    def to_dict(self) -> dict:
        return {
            "inputs": [str(p) for p in self.inputs],
            "output": str(self.output) if self.output else None,
            "options": self.options.to_dict(),
        }

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> list[str]:
        """
        Validate the job.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        if not self.inputs:
            errors.append("Job must list at least one input")
        if self.output is None:
            errors.append("Job must name an output")
        errors.extend(self.options.validate())
        return errors
