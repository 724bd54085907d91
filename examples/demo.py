"""Demo script for timeline-engine."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from timeline_engine.adapters.csv_adapter import parse
from timeline_engine.adapters.json_adapter import parse_evidence_bundle, parse_history
from timeline_engine.evaluator import compare_plan_to_actual
from timeline_engine.patterns import build_pattern_index
from timeline_engine.pipeline import reconcile_day

EXAMPLES = Path(__file__).resolve().parent


def main() -> None:
    planned = parse(str(EXAMPLES / "sample_plan.csv"))
    bundle = parse_evidence_bundle(str(EXAMPLES / "sample_evidence.json"))
    index = build_pattern_index(parse_history(str(EXAMPLES / "sample_history.json")))

    result = reconcile_day("2025-03-04", planned, bundle, pattern_index=index)
    print("Summary:", result.summary)
    for event in result.timeline:
        print(f"  {event.start_minutes:>4}-{event.end_minutes:<4} {event.category:<8} {event.title}")
    print("Comparison:", compare_plan_to_actual(planned, result.timeline))


if __name__ == "__main__":
    main()
