"""Builder: compatibility checks, power estimation and part comparison"""

from .compatibility import Advisory, Hard, evaluate, evaluate_outcomes
from .compare import compare_parts
from .power import (
    BASE_SYSTEM_WATTS,
    CPU_AVERAGE_WATTS,
    HEADROOM_RATIO,
    estimate_power,
    has_headroom,
)

__all__ = [
    "evaluate",
    "evaluate_outcomes",
    "Hard",
    "Advisory",
    "compare_parts",
    "estimate_power",
    "has_headroom",
    "BASE_SYSTEM_WATTS",
    "CPU_AVERAGE_WATTS",
    "HEADROOM_RATIO",
]
