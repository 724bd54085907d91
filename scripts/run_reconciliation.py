"""Reconcile one day's plan against an evidence file."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from timeline_engine.adapters import csv_adapter, json_adapter
from timeline_engine.config import Config
from timeline_engine.evaluator import compare_plan_to_actual
from timeline_engine.logging_config import setup_logging
from timeline_engine.patterns import build_pattern_index
from timeline_engine.pipeline import reconcile_day

logger = logging.getLogger("run_reconciliation")


def _load_events(path: Path):
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return csv_adapter.parse(str(path))
    if suffix == ".json":
        return json_adapter.parse(str(path))
    raise ValueError("Unsupported input format, expected .csv or .json")


def build_report(result, planned) -> dict:
    return {
        "ymd": result.ymd,
        "summary": asdict(result.summary),
        "verification": {event_id: asdict(item) for event_id, item in result.verification.items()},
        "timeline": [asdict(event) for event in result.timeline],
        "sessions": [asdict(session) for session in result.sessions],
        "comparison": compare_plan_to_actual(planned, result.timeline),
        "anomalies": asdict(result.anomalies) if result.anomalies is not None else None,
        "valid": result.validation.valid,
        "stats": result.stats,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Run timeline-engine day reconciliation")
    parser.add_argument("--date", required=True, help="Day to reconcile (YYYY-MM-DD)")
    parser.add_argument("--plan", required=True, help="Path to CSV/JSON planned events file")
    parser.add_argument("--evidence", required=True, help="Path to JSON evidence bundle")
    parser.add_argument("--actuals", help="Path to CSV/JSON stored actual events")
    parser.add_argument("--history", help="Path to JSON history used to learn patterns")
    args = parser.parse_args()

    config = Config.from_env()
    setup_logging(config)

    planned = _load_events(Path(args.plan))
    bundle = json_adapter.parse_evidence_bundle(args.evidence)
    stored = _load_events(Path(args.actuals)) if args.actuals else []
    pattern_index = build_pattern_index(json_adapter.parse_history(args.history)) if args.history else None

    result = reconcile_day(args.date, planned, bundle, stored_actuals=stored, pattern_index=pattern_index, config=config)
    report = build_report(result, planned)

    print(json.dumps(report, indent=2, default=str))

    outputs_dir = Path("outputs")
    outputs_dir.mkdir(parents=True, exist_ok=True)
    out_path = outputs_dir / f"reconciliation_{args.date}.json"
    out_path.write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
    logger.info("Saved reconciliation report to %s", out_path)


if __name__ == "__main__":
    main()
