"""Benchmark category models on a JSON history of actual events."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from timeline_engine.adapters.json_adapter import parse_history
from timeline_engine.category_model import benchmark_category_models, build_category_table


def main() -> None:
    parser = argparse.ArgumentParser(description="Run timeline-engine category model benchmark")
    parser.add_argument("--history", required=True, help="Path to JSON history file")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    entries = parse_history(args.history)
    X, y, feature_names = build_category_table(entries)
    report = benchmark_category_models(X, y, seed=args.seed)
    report["feature_names"] = feature_names
    report["n_instances"] = int(len(y))

    print(json.dumps(report, indent=2))

    outputs_dir = Path("outputs")
    outputs_dir.mkdir(parents=True, exist_ok=True)
    out_path = outputs_dir / "category_benchmark_report.json"
    out_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(f"Saved benchmark report to {out_path}")


if __name__ == "__main__":
    main()
