"""
Coaching Insights
Rule-based feedback: per-metric status bands, phase cues, an overall message
and drill recommendations.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from .metric_extractor import MetricVector

logger = logging.getLogger(__name__)


STATUS_GOOD = "good"
STATUS_WARNING = "warning"
STATUS_DANGER = "danger"


@dataclass
class Insight:
    metric: str
    value: float
    status: str
    title: str
    feedback: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class MetricBand:
    """
    Good band for one metric. Values below `low` get `below`, values above
    `high` get `above`; each side carries its own (status, title, feedback).
    """
    low: float
    high: float
    good: Tuple[str, str]
    below: Tuple[str, str, str]
    above: Tuple[str, str, str]

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


METRIC_BANDS: Dict[str, MetricBand] = {
    "elbow": MetricBand(
        low=140, high=160,
        good=("Excellent Elbow Position",
              "Your elbow angle is optimal for power generation and injury prevention."),
        below=(STATUS_WARNING, "Elbow Too Bent",
               "Try to extend your arm more during the trophy position. "
               "This will increase your reach and power."),
        above=(STATUS_DANGER, "Elbow Over-Extended",
               "Your elbow is too straight. Maintain a slight bend for better "
               "racket head speed and control."),
    ),
    "knee": MetricBand(
        low=130, high=150,
        good=("Good Knee Bend",
              "Your knee bend is helping generate upward momentum and power."),
        below=(STATUS_DANGER, "Excessive Knee Bend",
               "You're bending too much. This can reduce power and make timing difficult."),
        above=(STATUS_WARNING, "Insufficient Knee Bend",
               "Bend your knees more to load energy and drive upward through the serve."),
    ),
    "x_factor": MetricBand(
        low=35, high=55,
        good=("Excellent X-Factor",
              "Great shoulder-hip separation! This creates the kinetic chain for powerful serves."),
        below=(STATUS_WARNING, "Limited Rotation",
               "Try to rotate your shoulders more while keeping hips stable for better power transfer."),
        above=(STATUS_DANGER, "Over-Rotation",
               "Excessive rotation can hurt timing. Focus on controlled shoulder turn."),
    ),
    "contact_height": MetricBand(
        low=210, high=240,
        good=("Optimal Contact Height",
              "Perfect contact point for maximum power and angle into the service box."),
        below=(STATUS_WARNING, "Low Contact Point",
               "Try to hit the ball higher by fully extending and using leg drive."),
        above=(STATUS_DANGER, "Contact Too High",
               "Make sure you're not over-reaching. Natural extension is key."),
    ),
}


def classify_metric(metric: str, value: float) -> Insight:
    """
    Classify one metric value against its band.

    Raises:
        KeyError: metric has no coaching band (follow_through is not coached)
    """
    band = METRIC_BANDS[metric]
    if band.contains(value):
        title, feedback = band.good
        return Insight(metric, value, STATUS_GOOD, title, feedback)
    status, title, feedback = band.below if value < band.low else band.above
    return Insight(metric, value, status, title, feedback)


def generate_insights(vector: MetricVector) -> List[Insight]:
    return [classify_metric(name, vector.get(name)) for name in METRIC_BANDS]


PHASE_FEEDBACK = {
    "preparation": "Good setup position. Focus on relaxed shoulders and proper stance.",
    "loading": "Loading phase active. Ensure weight is on back foot and racket is in trophy position.",
    "acceleration": "Acceleration phase! Drive up with legs and rotate shoulders for maximum power.",
    "contact": "Contact moment! Full extension and snap the wrist for spin and power.",
    "follow-through": "Follow through completely. Let the racket wrap around your body naturally.",
}

DEFAULT_PHASE_FEEDBACK = "Keep practicing your serve motion for better consistency."


def phase_feedback(phase: Optional[str]) -> str:
    return PHASE_FEEDBACK.get(phase, DEFAULT_PHASE_FEEDBACK)


def overall_feedback(similarity: int) -> str:
    if similarity >= 80:
        return "Excellent technique! You're serving at a professional level."
    if similarity >= 60:
        return "Good serve! Focus on the areas below for improvement."
    return "Keep practicing! Small adjustments will make a big difference."


# =============================================================================
# Drills
# =============================================================================

PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


@dataclass
class Drill:
    title: str
    description: str
    difficulty: str
    duration_minutes: int
    priority: str

    def to_dict(self) -> Dict:
        return asdict(self)


CONSISTENCY_DRILL = Drill(
    title="Serve Consistency",
    description="Serve 20 balls focusing on repeating the same motion every time.",
    difficulty="All Levels",
    duration_minutes=20,
    priority="low"
)


def recommend_drills(vector: MetricVector) -> List[Drill]:
    """
    One drill per metric outside its good band, plus the consistency drill,
    ordered by priority (high first). Equal priorities keep insertion order.
    """
    drills: List[Drill] = []

    if not METRIC_BANDS["elbow"].contains(vector.elbow):
        drills.append(Drill(
            title="Trophy Position Hold",
            description="Practice holding the trophy position for 3 seconds. Focus on 90-degree elbow angle.",
            difficulty="Beginner",
            duration_minutes=5,
            priority="high"
        ))

    if not METRIC_BANDS["knee"].contains(vector.knee):
        drills.append(Drill(
            title="Leg Drive Practice",
            description="Practice explosive leg extension from a deep squat position. Focus on timing.",
            difficulty="Intermediate",
            duration_minutes=10,
            priority="high" if vector.knee > 160 else "medium"
        ))

    if not METRIC_BANDS["x_factor"].contains(vector.x_factor):
        drills.append(Drill(
            title="Shoulder-Hip Separation",
            description="Practice turning shoulders while keeping hips stable. Use resistance band.",
            difficulty="Advanced",
            duration_minutes=8,
            priority="high"
        ))

    if not METRIC_BANDS["contact_height"].contains(vector.contact_height):
        drills.append(Drill(
            title="High Contact Point",
            description="Practice hitting balls suspended above your head. Focus on full extension.",
            difficulty="Intermediate",
            duration_minutes=15,
            priority="medium"
        ))

    drills.append(CONSISTENCY_DRILL)

    # sorted() is stable
    return sorted(drills, key=lambda d: PRIORITY_RANK[d.priority], reverse=True)
