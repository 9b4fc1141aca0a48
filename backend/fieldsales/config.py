# backend/fieldsales/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///fieldsales.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Visits: salesman must be this close to a store with registered coordinates
    GEOFENCE_ENFORCED = _env_bool("GEOFENCE_ENFORCED", True)
    GEOFENCE_RADIUS_METERS = float(os.environ.get("GEOFENCE_RADIUS_METERS", "200"))

    # Reports: trailing window used when the caller does not pass ?days=
    REPORT_WINDOW_DAYS = int(os.environ.get("REPORT_WINDOW_DAYS", "30"))

    DEFAULT_LOW_STOCK_THRESHOLD = int(os.environ.get("DEFAULT_LOW_STOCK_THRESHOLD", "10"))
    EXPIRY_ALERT_DAYS = int(os.environ.get("EXPIRY_ALERT_DAYS", "30"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
