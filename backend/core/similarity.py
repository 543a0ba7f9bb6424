"""
Similarity Scoring
Scores a metric vector against the target serve profile on a 0-100 scale.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict

from .metric_extractor import MetricVector, METRIC_NAMES


@dataclass(frozen=True)
class TargetProfile:
    """Reference serve mechanics every metric vector is compared with"""
    elbow: float = 150.0
    knee: float = 140.0
    x_factor: float = 45.0
    contact_height: float = 220.0
    follow_through: float = 15.0

    def __post_init__(self):
        for name in METRIC_NAMES:
            if getattr(self, name) <= 0:
                raise ValueError(f"Target value for {name} must be > 0")

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


DEFAULT_TARGET = TargetProfile()


def metric_deviations(vector: MetricVector, target: TargetProfile = DEFAULT_TARGET) -> Dict[str, float]:
    """Relative deviation |actual - target| / target per metric"""
    return {
        name: abs(vector.get(name) - getattr(target, name)) / getattr(target, name)
        for name in METRIC_NAMES
    }


def compute_similarity(vector: MetricVector, target: TargetProfile = DEFAULT_TARGET) -> int:
    """
    Similarity of `vector` to `target`.

    The five relative deviations are averaged and mapped to
    round((1 - avg) * 100), clamped to [0, 100]. Halves round up.
    """
    deviations = metric_deviations(vector, target)
    avg_deviation = sum(deviations.values()) / len(deviations)
    score = math.floor((1 - avg_deviation) * 100 + 0.5)
    return int(max(0, min(100, score)))
