from hypothesis import given
from hypothesis import strategies as st

from timeline_engine.metrics import build_day_summary
from timeline_engine.verification import EvidenceSummary, ScreenTimeEvidence, VerificationResult


def result(event_id, status, distraction_minutes=None):
    evidence = EvidenceSummary()
    if distraction_minutes is not None:
        evidence.screen_time = ScreenTimeEvidence(distraction_minutes, distraction_minutes, [], True)
    return VerificationResult(event_id, status, 0.5, evidence)


def test_empty_day_has_full_adherence():
    summary = build_day_summary({})
    assert summary.total_planned == 0
    assert summary.adherence_score == 100


def test_adherence_counts_partial_as_half():
    results = {
        "a": result("a", "verified"),
        "b": result("b", "partial"),
        "c": result("c", "unverified"),
        "d": result("d", "distracted", 25.0),
    }

    summary = build_day_summary(results)

    assert (summary.verified, summary.partial, summary.unverified, summary.distracted) == (1, 1, 1, 1)
    assert summary.total_planned == 4
    assert summary.adherence_score == 38
    assert summary.distraction_minutes == 25.0


def test_adherence_rounds_half_up():
    results = {"a": result("a", "partial")}
    results.update({k: result(k, "unverified") for k in ("b", "c", "d")})
    assert build_day_summary(results).adherence_score == 13


@given(st.lists(st.sampled_from(["verified", "partial", "unverified", "contradicted", "distracted"]), max_size=40))
def test_adherence_stays_in_bounds(statuses):
    results = {str(i): result(str(i), status) for i, status in enumerate(statuses)}
    summary = build_day_summary(results)
    assert 0 <= summary.adherence_score <= 100
    assert summary.total_planned == len(statuses)
