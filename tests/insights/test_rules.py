"""Tests for the contextual insight rule table."""

import pytest

from carecadence.insights.derived import compute_stats, group_by_window
from carecadence.insights.models import Insight, InsightContext, InsightType
from carecadence.insights.rules import (
    all_complete_rule,
    evaluate_rules,
    evening_wind_down_rule,
    high_completion_rule,
    hydration_pattern_rule,
    meal_med_dependency_rule,
    mood_tracking_rule,
    morning_med_timing_rule,
    primary_insight,
    streak_rule,
    vitals_before_bp_meds_rule,
)
from carecadence.instances.models import InstanceStatus
from carecadence.regimen.schedule import window_label_for_hour

pytestmark = pytest.mark.smoke


def _ctx(tasks, hour, logging_days=None, recent_rate=None) -> InsightContext:
    return InsightContext(
        tasks=tuple(tasks),
        stats=compute_stats(tasks),
        by_window=group_by_window(tasks),
        current_hour=hour,
        current_window=str(window_label_for_hour(hour)),
        consecutive_logging_days=logging_days,
        recent_completion_rate=recent_rate,
    )


class TestReinforcement:
    def test_all_complete(self, make_instance):
        done = [make_instance("a", status="completed"), make_instance("b", status="skipped")]
        insight = all_complete_rule(_ctx(done, 18))
        assert insight.id == "all-complete"
        assert insight.type == InsightType.REINFORCEMENT
        assert insight.priority == 1

        assert all_complete_rule(_ctx([], 18)) is None
        assert all_complete_rule(_ctx(done + [make_instance("c")], 18)) is None

    def test_streak_needs_three_days(self):
        assert streak_rule(_ctx([], 10, logging_days=2)) is None
        assert streak_rule(_ctx([], 10, logging_days=None)) is None
        assert streak_rule(_ctx([], 10, logging_days=4)).title == "4-day streak"

    @pytest.mark.parametrize(("rate", "fires"), [(None, False), (84.9, False), (85, True), (100, True)])
    def test_high_completion(self, rate, fires):
        assert (high_completion_rule(_ctx([], 10, recent_rate=rate)) is not None) is fires

    def test_high_completion_message(self):
        assert high_completion_rule(_ctx([], 10, recent_rate=91.6)).message.startswith("92% completion")


class TestDependencies:
    def test_vitals_before_bp_meds(self, make_instance):
        tasks = [make_instance("lisinopril", name="Lisinopril"), make_instance("bp", item_type="vitals")]
        insight = vitals_before_bp_meds_rule(_ctx(tasks, 8))
        assert insight.type == InsightType.DEPENDENCY
        assert insight.category == "vitals"

        assert vitals_before_bp_meds_rule(_ctx(tasks, 13)) is None

    def test_vitals_already_recorded(self, make_instance):
        tasks = [make_instance("lisinopril", name="Lisinopril"), make_instance("bp", status="completed", item_type="vitals")]
        assert vitals_before_bp_meds_rule(_ctx(tasks, 8)) is None

    def test_unrelated_medication(self, make_instance):
        tasks = [make_instance("vitd", name="Vitamin D"), make_instance("bp", item_type="vitals")]
        assert vitals_before_bp_meds_rule(_ctx(tasks, 8)) is None

    @pytest.mark.parametrize(
        ("name", "instructions", "hour", "fires"),
        [
            ("Aspirin", "Take with food", 12, True),
            ("Metformin", None, 18, True),
            ("Aspirin", "Take with food", 10, False),
            ("Aspirin", "Take on an empty stomach", 12, False),
        ],
    )
    def test_meal_med_dependency(self, make_instance, name, instructions, hour, fires):
        tasks = [make_instance("med", name=name, instructions=instructions)]
        insight = meal_med_dependency_rule(_ctx(tasks, hour))
        assert (insight is not None) is fires
        if fires:
            assert insight.message == f"{name} is more effective when taken with a meal."


class TestTimeOfDay:
    def test_morning_med_timing(self, make_instance):
        tasks = [make_instance("med")]
        assert morning_med_timing_rule(_ctx(tasks, 9)).id == "morning-med-timing"
        assert morning_med_timing_rule(_ctx(tasks, 11)) is None
        assert morning_med_timing_rule(_ctx([make_instance("med", status="completed")], 9)) is None

    def test_hydration_pattern(self, make_instance):
        behind = [
            make_instance("w1", label="afternoon", item_type="hydration", window_id="w1"),
            make_instance("w2", label="afternoon", item_type="hydration", window_id="w2"),
        ]
        assert hydration_pattern_rule(_ctx(behind, 15)).confidence == 0.7
        assert hydration_pattern_rule(_ctx(behind, 18)) is None

        behind[0].status = InstanceStatus.COMPLETED
        assert hydration_pattern_rule(_ctx(behind, 15)) is None

    def test_evening_wind_down(self, make_instance):
        one = [make_instance("mood", label="evening", item_type="mood")]
        assert evening_wind_down_rule(_ctx(one, 20)).message == "1 task left for tonight when ready."

        two = one + [make_instance("sleep", label="night", item_type="sleep")]
        assert evening_wind_down_rule(_ctx(two, 21)).message == "2 tasks left for tonight when ready."
        assert evening_wind_down_rule(_ctx(two, 22)) is None
        assert evening_wind_down_rule(_ctx([], 20)) is None

    def test_mood_tracking(self, make_instance):
        mood = [make_instance("mood", label="evening", item_type="mood")]
        assert mood_tracking_rule(_ctx(mood, 16)).category == "mood"
        assert mood_tracking_rule(_ctx(mood, 19)) is None

        mood[0].status = InstanceStatus.COMPLETED
        assert mood_tracking_rule(_ctx(mood, 16)) is None


class TestEvaluation:
    def test_sorted_by_priority(self, make_instance):
        tasks = [make_instance("lisinopril", name="Lisinopril"), make_instance("bp", item_type="vitals")]
        insights = evaluate_rules(_ctx(tasks, 8, logging_days=5))
        assert [i.id for i in insights] == ["streak", "vitals-before-bp"]
        assert primary_insight(_ctx(tasks, 8, logging_days=5)).id == "streak"

    def test_equal_priorities_keep_table_order(self, make_instance):
        tasks = [
            make_instance("lisinopril", name="Lisinopril", instructions="Take with food"),
            make_instance("bp", item_type="vitals"),
        ]
        assert [i.id for i in evaluate_rules(_ctx(tasks, 8))] == ["vitals-before-bp", "meal-med-dependency"]

    def test_low_confidence_dropped(self):
        def unsure(ctx):
            return Insight(
                id="unsure", icon="?", title="Maybe", message="", type=InsightType.SUGGESTION, confidence=0.5, priority=0
            )

        assert evaluate_rules(_ctx([], 10), rules=(unsure,)) == []

    def test_nothing_fires(self):
        assert primary_insight(_ctx([], 3)) is None
