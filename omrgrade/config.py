"""
Tunable detection parameters.
"""

import json
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Any, Dict


@dataclass(frozen=True)
class DetectionConfig:
    """Numeric knobs for the grid scan and answer resolution"""
    scan_step: int = 10
    bubble_radius: int = 15
    min_darkness: float = 80
    dark_ratio_threshold: float = 0.4
    strict_multiplier: float = 1.2
    low_detection_warning_fraction: float = 0.1
    # Per-sample darkness that counts a sample as "dark"
    dark_sample_threshold: float = 100
    workers: int = 1
    verbose: bool = False

    def __post_init__(self):
        if self.scan_step < 1:
            raise ValueError(f"scan_step must be >= 1, got {self.scan_step}")
        if self.bubble_radius < 0:
            raise ValueError(f"bubble_radius must be >= 0, got {self.bubble_radius}")
        if not 0 <= self.dark_ratio_threshold <= 1:
            raise ValueError(f"dark_ratio_threshold must be in [0, 1], got {self.dark_ratio_threshold}")
        if not 0 <= self.low_detection_warning_fraction <= 1:
            raise ValueError(
                f"low_detection_warning_fraction must be in [0, 1], got {self.low_detection_warning_fraction}"
            )
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    @property
    def strict_darkness(self) -> float:
        """Darkness a resolved answer must exceed to be kept"""
        return self.min_darkness * self.strict_multiplier

    def replace(self, **overrides) -> "DetectionConfig":
        """Copy with the given (non-None) fields overridden"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown detection settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def from_file(cls, path: Path) -> "DetectionConfig":
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
