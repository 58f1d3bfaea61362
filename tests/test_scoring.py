import pytest

from postop_monitor.records import SymptomLog
from postop_monitor.scoring import calculate_priority_score, round_half_up
from tests.conftest import NOW, make_log, make_patient, make_summary


def labels(result):
    return {factor.label: factor.points for factor in result.breakdown}


def test_critical_patient_with_fresh_severe_log_scores_57():
    patient = make_patient(risk="critical")
    logs = [make_log(symptoms={"Pain": 9, "Nausea": 8}, hours_ago=0)]

    result = calculate_priority_score(patient, logs, [], 0, now=NOW)

    assert result.score == 57
    assert labels(result) == {"Risk (critical)": 40, "Severity": 17}


def test_empty_log_eighty_hours_old_scores_55():
    patient = make_patient(risk="critical")
    logs = [make_log(symptoms={}, hours_ago=80)]

    result = calculate_priority_score(patient, logs, [], 0, now=NOW)

    assert result.score == 55
    assert labels(result) == {"Risk (critical)": 40, "Inactive 72hrs+": 15}


def test_patient_who_never_logged_gets_full_inactivity_points():
    result = calculate_priority_score(make_patient(risk="low"), [], [], 0, now=NOW)

    assert result.score == 25
    assert labels(result)["Inactive 72hrs+"] == 15


@pytest.mark.parametrize(
    ("hours_ago", "expected"),
    [(10, 0), (24, 5), (47.9, 5), (48, 10), (71, 10), (72, 15)],
)
def test_inactivity_tiers(hours_ago, expected):
    logs = [make_log(symptoms={"Pain": 1}, hours_ago=hours_ago)]
    result = calculate_priority_score(make_patient(risk="low"), logs, [], 0, now=NOW)

    inactivity = sum(points for label, points in labels(result).items() if label.startswith("Inactive"))
    assert inactivity == expected


def test_missing_timestamp_counts_as_never_logged():
    logs = [SymptomLog(patient_id="p1", submitted_at=None, symptoms=[])]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert labels(result)["Inactive 72hrs+"] == 15


def test_risk_contribution_is_monotonic():
    logs = [make_log(symptoms={"Pain": 6}, hours_ago=30)]
    scores = [
        calculate_priority_score(make_patient(risk=tier), logs, [], 1, now=NOW).score
        for tier in ("low", "medium", "high", "critical")
    ]

    assert scores == sorted(scores)
    assert scores[-1] - scores[0] == 30


@pytest.mark.parametrize("risk", [None, "unknown", "SEVERE"])
def test_unknown_or_missing_risk_defaults_to_twenty(risk):
    result = calculate_priority_score(make_patient(risk=risk), [], [], 0, now=NOW)

    risk_points = [f.points for f in result.breakdown if f.label.startswith("Risk")]
    assert risk_points == [20]


def test_risk_tier_is_case_insensitive():
    result = calculate_priority_score(make_patient(risk="High"), [], [], 0, now=NOW)

    assert labels(result)["Risk (high)"] == 30


@pytest.mark.parametrize(("streak", "expected"), [(2, 0), (3, 10), (5, 10), (6, 15), (9, 20), (12, 20)])
def test_streak_points_follow_newest_summary(streak, expected):
    summaries = [make_summary(streak_length=streak, read=True), make_summary(streak_length=12, read=True)]
    result = calculate_priority_score(make_patient(), [], summaries, 0, now=NOW)

    assert labels(result).get("Streak", 0) == expected


def test_unread_alerts_are_capped():
    summaries = [make_summary(streak_length=3 * (i + 1)) for i in range(5)]
    result = calculate_priority_score(make_patient(), [], summaries, 0, now=NOW)

    assert labels(result)["Unread Alerts"] == 15


def test_unread_messages_are_capped_and_never_negative():
    capped = calculate_priority_score(make_patient(), [], [], 10, now=NOW)
    negative = calculate_priority_score(make_patient(), [], [], -3, now=NOW)

    assert labels(capped)["Unread Msgs"] == 6
    assert "Unread Msgs" not in labels(negative)


def test_worsening_trend_uses_oldest_log_in_window():
    logs = [
        make_log(symptoms={"Pain": 7}, hours_ago=1),
        make_log(symptoms={"Pain": 9}, hours_ago=25),
        make_log(symptoms={"Pain": 4}, hours_ago=49),
    ]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert labels(result)["Worsening Trend"] == 10


def test_trend_ignores_logs_older_than_fifth():
    logs = [
        make_log(symptoms={"Pain": 7}, hours_ago=1),
        make_log(symptoms={"Pain": 2}, hours_ago=25),
        make_log(symptoms={"Pain": 2}, hours_ago=49),
        make_log(symptoms={"Pain": 2}, hours_ago=73),
        make_log(symptoms={"Pain": 7}, hours_ago=97),
        make_log(symptoms={"Pain": 1}, hours_ago=121),
    ]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert not any("Trend" in label for label in labels(result))


def test_improving_trend_subtracts_points():
    logs = [make_log(symptoms={"Pain": 2}, hours_ago=1), make_log(symptoms={"Pain": 6}, hours_ago=25)]
    result = calculate_priority_score(make_patient(risk="low"), logs, [], 0, now=NOW)

    assert labels(result)["Improving Trend"] == -5
    assert result.score == 10 + 4 - 5


def test_trend_within_half_point_is_flat():
    logs = [
        make_log(symptoms={"Pain": 5, "Nausea": 6}, hours_ago=1),
        make_log(symptoms={"Pain": 5}, hours_ago=25),
    ]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert not any("Trend" in label for label in labels(result))


def test_single_log_has_no_trend():
    logs = [make_log(symptoms={"Pain": 10}, hours_ago=1)]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert not any("Trend" in label for label in labels(result))


def test_entry_without_severity_counts_as_zero():
    logs = [make_log(symptoms={"Pain": 8, "Nausea": None}, hours_ago=1)]
    result = calculate_priority_score(make_patient(), logs, [], 0, now=NOW)

    assert labels(result)["Severity"] == 8


def test_score_is_clamped_to_hundred():
    patient = make_patient(risk="critical")
    logs = [make_log(symptoms={"Pain": 10}, hours_ago=100)] + [
        make_log(symptoms={"Pain": 1}, hours_ago=100 + i) for i in range(1, 5)
    ]
    summaries = [make_summary(streak_length=9 + 3 * i) for i in range(4)]

    result = calculate_priority_score(patient, logs, summaries, 5, now=NOW)

    assert sum(f.points for f in result.breakdown) > 100
    assert result.score == 100


def test_score_never_drops_below_zero_and_breakdown_skips_zeroes():
    patient = make_patient(risk="low")
    logs = [make_log(symptoms={"Pain": 1}, hours_ago=1), make_log(symptoms={"Pain": 10}, hours_ago=2)]

    result = calculate_priority_score(patient, logs, [], 0, now=NOW)

    assert 0 <= result.score <= 100
    assert all(f.points != 0 for f in result.breakdown)


def test_describe_joins_factors():
    patient = make_patient(risk="critical")
    logs = [make_log(symptoms={"Pain": 9, "Nausea": 8}, hours_ago=0)]

    result = calculate_priority_score(patient, logs, [], 0, now=NOW)

    assert result.describe() == "Risk (critical): 40pts | Severity: 17pts"


def test_round_half_up():
    assert round_half_up(14.5) == 15
    assert round_half_up(16.5) == 17
    assert round_half_up(-4.5) == -4
