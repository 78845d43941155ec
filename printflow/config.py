from __future__ import annotations

import os


DEFAULT_STAGE_SEQUENCE = (
    "foiling",
    "printing",
    "pasting",
    "cutting",
    "letterpress",
    "embossing",
    "packing",
)

DELAY_REASON_CATEGORIES = {
    "design",
    "client",
    "prepress",
    "production",
    "outsource_vendor",
    "material",
    "courier",
    "internal_process",
}

# Hours; mean / median / p95 per stage until enough completed lines exist.
DEFAULT_STAGE_BASELINES = {
    "intake": {"mean": 24.0, "median": 20.0, "p95": 48.0},
    "design": {"mean": 48.0, "median": 40.0, "p95": 96.0},
    "prepress": {"mean": 24.0, "median": 20.0, "p95": 48.0},
    "manufacturing": {"mean": 72.0, "median": 60.0, "p95": 144.0},
    "dispatch": {"mean": 12.0, "median": 8.0, "p95": 24.0},
    "done": {"mean": 0.0, "median": 0.0, "p95": 0.0},
}

MIN_LEARNING_SAMPLES = 10
DEFAULT_CALIBRATION_CONFIDENCE = 0.7
MAX_CALIBRATION_CONFIDENCE = 0.95
TIGHT_THRESHOLD_CONFIDENCE = 0.8

PRIORITY_LOW_AFTER_DAYS = 5
PRIORITY_WARNING_FROM_DAYS = 3
AT_RISK_WITHIN_DAYS = 2

TIGHT_STATUS_THRESHOLDS = (80, 50)
LOOSE_STATUS_THRESHOLDS = (75, 45)

DEFAULT_BASELINE_KEY = "global"

LOG_LEVEL = os.getenv("PRINTFLOW_LOG_LEVEL", "INFO").upper()
