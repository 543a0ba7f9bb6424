"""
Shared fixtures: a controllable clock and synthetic pose builders.
"""

import math

import pytest


class FakeClock:
    """Manually advanced monotonic clock; also usable as a sleep function."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def _set(landmarks, name, x, y, visibility=0.9):
    from core.pose_source import Landmark, LANDMARK_INDICES
    landmarks[LANDMARK_INDICES[name]] = Landmark(x=x, y=y, visibility=visibility)


def build_target_pose(timestamp: float = 0.0, arm_visibility: float = 0.9):
    """
    Pose whose metrics equal the default target profile:
    elbow 50 deg raw (150 mapped), knee 120 deg raw (140 mapped),
    shoulder line at 45 deg over a level hip line, wrist at y = 0.6.
    """
    from core.pose_source import Landmark, PoseSample, NUM_LANDMARKS

    landmarks = [Landmark(x=0.5, y=0.5, visibility=0.9) for _ in range(NUM_LANDMARKS)]

    elbow = (0.6, 0.7)
    wrist = (0.6, 0.6)
    a = math.radians(50)
    shoulder = (elbow[0] + 0.2 * math.sin(a), elbow[1] - 0.2 * math.cos(a))

    knee = (0.5, 0.8)
    ankle = (0.5, 0.9)
    k = math.radians(120)
    hip = (knee[0] + 0.15 * math.sin(k), knee[1] + 0.15 * math.cos(k))

    _set(landmarks, "right_shoulder", *shoulder, visibility=arm_visibility)
    _set(landmarks, "right_elbow", *elbow, visibility=arm_visibility)
    _set(landmarks, "right_wrist", *wrist, visibility=arm_visibility)
    _set(landmarks, "left_shoulder", shoulder[0] - 0.1, shoulder[1] - 0.1)

    _set(landmarks, "right_hip", *hip)
    _set(landmarks, "left_hip", hip[0] - 0.2, hip[1])
    _set(landmarks, "right_knee", *knee)
    _set(landmarks, "right_ankle", *ankle)

    return PoseSample(landmarks=landmarks, timestamp=timestamp)


def mirror_pose(pose):
    """Swap left/right landmarks and flip x, turning a right-handed pose left-handed."""
    from core.pose_source import Landmark, PoseSample, LANDMARK_NAMES, LANDMARK_INDICES

    mirrored = []
    for name in LANDMARK_NAMES:
        if name.startswith("left_"):
            source = "right_" + name[len("left_"):]
        elif name.startswith("right_"):
            source = "left_" + name[len("right_"):]
        else:
            source = name
        lm = pose.landmarks[LANDMARK_INDICES[source]]
        mirrored.append(Landmark(x=1 - lm.x, y=lm.y, z=lm.z, visibility=lm.visibility))
    return PoseSample(landmarks=mirrored, timestamp=pose.timestamp)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def target_pose():
    return build_target_pose()
