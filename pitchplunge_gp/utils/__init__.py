"""
Utilities Module for the Pitch-Plunge Experiments

Utility functions and tools:
- profiler: Timing of regression methods
- config_loader: YAML configuration loading into dataclasses
"""

from .config_loader import (
    config_from_dict,
    config_to_dict,
    load_config,
    load_yaml,
    save_config,
)
from .profiler import (
    Profiler,
    Timer,
    TimingResult,
)

__all__ = [
    # Profiler
    "Profiler",
    "Timer",
    "TimingResult",
    # Config loading
    "config_from_dict",
    "config_to_dict",
    "load_config",
    "load_yaml",
    "save_config",
]
