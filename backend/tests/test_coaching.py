"""
Tests for coaching insights and drill recommendations
"""

import pytest


def vector(**overrides):
    from core.metric_extractor import MetricVector

    values = dict(elbow=150, knee=140, x_factor=45, contact_height=220, follow_through=15)
    values.update(overrides)
    return MetricVector(**values)


class TestClassifyMetric:

    @pytest.mark.parametrize("metric,value,status,title", [
        ("elbow", 150, "good", "Excellent Elbow Position"),
        ("elbow", 140, "good", "Excellent Elbow Position"),
        ("elbow", 139, "warning", "Elbow Too Bent"),
        ("elbow", 161, "danger", "Elbow Over-Extended"),
        ("knee", 130, "good", "Good Knee Bend"),
        ("knee", 155, "warning", "Insufficient Knee Bend"),
        ("knee", 125, "danger", "Excessive Knee Bend"),
        ("x_factor", 55, "good", "Excellent X-Factor"),
        ("x_factor", 30, "warning", "Limited Rotation"),
        ("x_factor", 60, "danger", "Over-Rotation"),
        ("contact_height", 240, "good", "Optimal Contact Height"),
        ("contact_height", 200, "warning", "Low Contact Point"),
        ("contact_height", 245, "danger", "Contact Too High"),
    ])
    def test_bands(self, metric, value, status, title):
        from core.coaching import classify_metric

        insight = classify_metric(metric, value)

        assert insight.status == status
        assert insight.title == title
        assert insight.feedback

    def test_follow_through_not_coached(self):
        from core.coaching import classify_metric

        with pytest.raises(KeyError):
            classify_metric("follow_through", 15)

    def test_generate_insights_covers_four_metrics(self):
        from core.coaching import generate_insights

        insights = generate_insights(vector(elbow=120))

        assert [i.metric for i in insights] == ["elbow", "knee", "x_factor", "contact_height"]
        assert insights[0].status == "warning"
        assert all(i.status == "good" for i in insights[1:])


class TestFeedbackMessages:

    def test_phase_feedback(self):
        from core.coaching import phase_feedback, PHASE_FEEDBACK, DEFAULT_PHASE_FEEDBACK
        from core.metric_extractor import SERVE_PHASES

        for phase in SERVE_PHASES:
            assert phase_feedback(phase) == PHASE_FEEDBACK[phase]
        assert phase_feedback("warmup") == DEFAULT_PHASE_FEEDBACK
        assert phase_feedback(None) == DEFAULT_PHASE_FEEDBACK

    def test_overall_feedback(self):
        from core.coaching import overall_feedback

        assert overall_feedback(80).startswith("Excellent technique")
        assert overall_feedback(79).startswith("Good serve")
        assert overall_feedback(60).startswith("Good serve")
        assert overall_feedback(59).startswith("Keep practicing")


class TestDrillRecommendations:

    def test_only_elbow_out_of_band(self):
        """Elbow out of band: trophy drill (high) then consistency (low)"""
        from core.coaching import recommend_drills

        drills = recommend_drills(vector(elbow=120))

        assert [d.title for d in drills] == ["Trophy Position Hold", "Serve Consistency"]
        assert [d.priority for d in drills] == ["high", "low"]

    def test_all_in_band(self):
        from core.coaching import recommend_drills

        drills = recommend_drills(vector())
        assert [d.title for d in drills] == ["Serve Consistency"]

    def test_sorted_by_priority_stable(self):
        from core.coaching import recommend_drills

        drills = recommend_drills(vector(elbow=120, knee=155, x_factor=60, contact_height=200))

        assert [d.title for d in drills] == [
            "Trophy Position Hold",
            "Shoulder-Hip Separation",
            "Leg Drive Practice",
            "High Contact Point",
            "Serve Consistency",
        ]

    def test_leg_drive_priority_escalates(self):
        from core.coaching import recommend_drills

        drills = recommend_drills(vector(knee=165))
        leg = next(d for d in drills if d.title == "Leg Drive Practice")
        assert leg.priority == "high"

    def test_drill_record_fields(self):
        from core.coaching import recommend_drills

        drill = recommend_drills(vector(elbow=120))[0].to_dict()
        assert drill == {
            "title": "Trophy Position Hold",
            "description": "Practice holding the trophy position for 3 seconds. Focus on 90-degree elbow angle.",
            "difficulty": "Beginner",
            "duration_minutes": 5,
            "priority": "high",
        }
