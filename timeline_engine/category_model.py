"""Category model: predict an activity category from when it happens.

Trained on historical actual events, it backs the local suggestion service
used by the auto-assign loop when no remote suggestion service is configured.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import GradientBoostingClassifier, RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, f1_score
from sklearn.model_selection import StratifiedKFold, cross_validate, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from timeline_engine.auto_assign import BlockDescriptor, CategorySuggestion
from timeline_engine.patterns import PatternSourceEvent
from timeline_engine.schema import MINUTES_PER_DAY, day_of_week

FEATURE_NAMES = [
    "day_of_week",
    "start_minutes",
    "duration_minutes",
    "time_of_day_sin",
    "time_of_day_cos",
    "is_weekend",
]

_UNLEARNABLE = {"unknown", "free"}


def _feature_row(dow: int, start_minutes: int, duration: int) -> list[float]:
    angle = 2 * math.pi * (start_minutes % MINUTES_PER_DAY) / MINUTES_PER_DAY
    return [
        float(dow),
        float(start_minutes),
        float(duration),
        math.sin(angle),
        math.cos(angle),
        1.0 if dow in (0, 6) else 0.0,
    ]


def build_category_table(entries: list[PatternSourceEvent]) -> tuple[np.ndarray, np.ndarray, list[str]]:
    """Build a deterministic (X, y, feature_names) table from labelled history."""

    rows: list[list[float]] = []
    labels: list[str] = []
    ordered = sorted(entries, key=lambda entry: (entry.ymd, entry.event.start_minutes, entry.event.id))
    for entry in ordered:
        event = entry.event
        if event.category in _UNLEARNABLE or event.duration <= 0:
            continue
        try:
            dow = day_of_week(entry.ymd)
        except ValueError:
            continue
        rows.append(_feature_row(dow, event.start_minutes, event.duration))
        labels.append(event.category)

    if not rows:
        return np.empty((0, len(FEATURE_NAMES))), np.array([], dtype=object), list(FEATURE_NAMES)
    return np.asarray(rows, dtype=float), np.asarray(labels, dtype=object), list(FEATURE_NAMES)


def _make_models(seed: int) -> dict[str, Any]:
    return {
        "LogisticRegression": Pipeline(
            [
                ("scaler", StandardScaler()),
                ("clf", LogisticRegression(max_iter=1000, random_state=seed)),
            ]
        ),
        "RandomForest": RandomForestClassifier(n_estimators=200, random_state=seed),
        "GradientBoosting": GradientBoostingClassifier(random_state=seed),
    }


def benchmark_category_models(X: np.ndarray, y: np.ndarray, seed: int = 42) -> dict:
    """Compare candidate classifiers with a stratified hold-out and CV when class counts allow."""

    classes, counts = np.unique(y, return_counts=True) if len(y) else (np.array([]), np.array([]))
    if len(X) == 0 or len(classes) < 2:
        return {"models": {}, "best_model": None, "n_classes": int(len(classes))}

    n_test = math.ceil(0.25 * len(y))
    can_stratify = int(counts.min()) >= 2 and n_test >= len(classes) and len(y) - n_test >= len(classes)
    if can_stratify:
        X_train, X_test, y_train, y_test = train_test_split(
            X, y, test_size=0.25, random_state=seed, stratify=y
        )
    else:
        # too little history for a hold-out: score on the training data
        X_train, X_test, y_train, y_test = X, X, y, y

    _, train_counts = np.unique(y_train, return_counts=True)
    min_class_count = int(train_counts.min())
    scoring = {"accuracy": "accuracy", "f1_macro": "f1_macro"}

    report: dict[str, Any] = {"models": {}, "holdout": can_stratify, "n_classes": int(len(classes))}
    for name, model in _make_models(seed).items():
        model_metrics: dict[str, Any] = {}

        if min_class_count >= 2:
            cv = StratifiedKFold(n_splits=max(2, min(5, min_class_count)), shuffle=True, random_state=seed)
            cv_scores = cross_validate(model, X_train, y_train, cv=cv, scoring=scoring)
            model_metrics["cv"] = {
                metric: {
                    "mean": float(np.mean(cv_scores[f"test_{metric}"])),
                    "std": float(np.std(cv_scores[f"test_{metric}"])),
                }
                for metric in scoring
            }
        else:
            model_metrics["cv"] = {
                "accuracy": {"mean": float(np.max(train_counts) / len(y_train)), "std": 0.0},
                "f1_macro": {"mean": 0.0, "std": 0.0},
            }

        fitted = model.fit(X_train, y_train)
        y_pred = fitted.predict(X_test)
        model_metrics["test"] = {
            "accuracy": float(accuracy_score(y_test, y_pred)),
            "f1_macro": float(f1_score(y_test, y_pred, average="macro", zero_division=0)),
        }
        report["models"][name] = model_metrics

    ranked = sorted(
        report["models"].items(),
        key=lambda item: item[1]["cv"]["f1_macro"]["mean"],
        reverse=True,
    )
    report["ranking"] = [
        {"model": name, "cv_f1_macro_mean": metrics["cv"]["f1_macro"]["mean"]} for name, metrics in ranked
    ]
    report["best_model"] = ranked[0][0] if ranked else None
    return report


@dataclass
class CategoryModel:
    estimator: Any
    name: str
    report: dict


def train_category_model(entries: list[PatternSourceEvent], seed: int = 42) -> CategoryModel:
    """Fit the best benchmarked model on all history."""

    X, y, _ = build_category_table(entries)
    if len(y) == 0:
        raise ValueError("Cannot train category model on empty history")

    if len(np.unique(y)) < 2:
        estimator = DummyClassifier(strategy="most_frequent").fit(X, y)
        return CategoryModel(estimator, "MostFrequent", {"models": {}, "best_model": None, "n_classes": 1})

    report = benchmark_category_models(X, y, seed=seed)
    best_name = report["best_model"]
    estimator = _make_models(seed)[best_name]
    estimator.fit(X, y)
    return CategoryModel(estimator, best_name, report)


def suggest_category(model: CategoryModel, ymd: str, start_minutes: int, end_minutes: int) -> CategorySuggestion:
    row = np.asarray([_feature_row(day_of_week(ymd), start_minutes, max(1, end_minutes - start_minutes))])
    probabilities = model.estimator.predict_proba(row)[0]
    best = int(np.argmax(probabilities))
    category = str(model.estimator.classes_[best])
    confidence = float(probabilities[best])
    return CategorySuggestion(
        category=category,
        confidence=confidence,
        reason=f"{model.name}: usually {category} at this time ({confidence:.0%})",
    )


class LocalCategorySuggester:
    """Suggestion service backed by a locally trained category model."""

    def __init__(self, model: CategoryModel):
        self.model = model

    async def suggest(self, block: BlockDescriptor) -> CategorySuggestion:
        return suggest_category(self.model, block.ymd, block.start_minutes, block.end_minutes)
