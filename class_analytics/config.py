"""Configuration: environment defaults and risk settings resolution."""

import logging
import os
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from class_analytics.models import RiskSettings, RiskWeights

logger = logging.getLogger(__name__)

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _parse_weights(raw: str) -> Dict[str, float]:
    """Parse "grades:0.5,absences:0.25,negativeEvents:0.25"."""
    weights = {}
    for item in raw.split(","):
        if ":" not in item:
            continue
        key, value = item.split(":", 1)
        try:
            weights[key.strip()] = float(value.strip())
        except ValueError:
            logger.warning("Ignoring weight %r", item)
    return weights


# camelCase keys as stored by the persistence layer
_SETTINGS_ALIASES = {
    "minGradeThreshold": "min_grade_threshold",
    "maxNegativeBehaviors": "max_negative_behaviors",
    "attendanceThreshold": "attendance_threshold",
    "riskScoreHighThreshold": "risk_score_high_threshold",
    "riskScoreMediumThreshold": "risk_score_medium_threshold",
    "penaltyPerAbsenceAboveThreshold": "penalty_per_absence_above_threshold",
    "negativeEvents": "negative_events",
}

_INT_FIELDS = {"max_negative_behaviors", "attendance_threshold"}


def _snake_keys(raw: Mapping[str, Any]) -> Dict[str, Any]:
    return {_SETTINGS_ALIASES.get(key, key): value for key, value in raw.items()}


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_risk_settings(raw: Optional[Mapping[str, Any]],
                            defaults: Optional[RiskSettings] = None) -> RiskSettings:
    """
    Build complete risk settings from a possibly partial mapping.

    Missing or non-numeric fields take the default value.

    Args:
        raw: Stored settings, camelCase or snake_case keys
        defaults: Values for missing fields (DEFAULT_RISK_SETTINGS if omitted)

    Returns:
        Fully populated RiskSettings
    """
    defaults = defaults or DEFAULT_RISK_SETTINGS
    if isinstance(raw, RiskSettings):
        return raw
    values = defaults.model_dump()
    if not raw:
        return RiskSettings(**values)

    data = _snake_keys(raw)
    for field in RiskSettings.model_fields:
        if field not in data:
            continue
        if field == "weights":
            if isinstance(data[field], Mapping):
                weights = dict(values["weights"])
                for key, value in _snake_keys(data[field]).items():
                    number = _numeric(value)
                    if key in RiskWeights.model_fields and number is not None:
                        weights[key] = number
                values["weights"] = weights
            continue
        number = _numeric(data[field])
        if number is None:
            if field == "penalty_per_absence_above_threshold" and data[field] is None:
                values[field] = None
            else:
                logger.info("Risk setting %s=%r is not numeric, using default", field, data[field])
            continue
        values[field] = int(number) if field in _INT_FIELDS else number

    return RiskSettings(**values)


def resolve_risk_settings(global_settings: RiskSettings,
                          per_class: Optional[Mapping[str, RiskSettings]],
                          class_id: Optional[str]) -> RiskSettings:
    """Per-class override if one exists for `class_id`, else the global settings."""
    if class_id and per_class and class_id in per_class:
        return per_class[class_id]
    return global_settings


def load_default_settings() -> RiskSettings:
    """Global default risk settings, overridable through the environment."""
    base = RiskSettings()
    weights = _parse_weights(os.getenv("RISK_WEIGHTS", ""))
    return normalize_risk_settings({
        "min_grade_threshold": _env_float("RISK_MIN_GRADE_THRESHOLD", base.min_grade_threshold),
        "max_negative_behaviors": _env_float("RISK_MAX_NEGATIVE_BEHAVIORS", base.max_negative_behaviors),
        "attendance_threshold": _env_float("RISK_ATTENDANCE_THRESHOLD", base.attendance_threshold),
        "risk_score_high_threshold": _env_float("RISK_SCORE_HIGH_THRESHOLD", base.risk_score_high_threshold),
        "risk_score_medium_threshold": _env_float("RISK_SCORE_MEDIUM_THRESHOLD", base.risk_score_medium_threshold),
        "weights": weights,
    }, defaults=base)


DEFAULT_RISK_SETTINGS = load_default_settings()

MAX_UPLOAD_SIZE_MB = int(_env_float("MAX_UPLOAD_SIZE_MB", 10))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024
ALLOW_ORIGINS = os.getenv("ALLOW_ORIGINS", "*").split(",")
DEBUG = os.getenv("DEBUG", "False").lower() == "true"
