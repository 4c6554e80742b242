# backend/aih_audit/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB stored next to the working directory unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///aih_audit.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Aggregate cache lifetime; invalidation only reaches the current process
    RECORD_CACHE_TTL_SECONDS = int(os.environ.get("RECORD_CACHE_TTL_SECONDS", "30"))

    # Archival: records older than the retention window with a finalized status
    ARCHIVE_RETENTION_YEARS = int(os.environ.get("ARCHIVE_RETENTION_YEARS", "3"))
    ARCHIVE_BATCH_SIZE = int(os.environ.get("ARCHIVE_BATCH_SIZE", "100"))
    # Finalized direct (1) and finalized after discussion (4)
    ARCHIVE_ELIGIBLE_STATUSES = (1, 4)

    # Record registration limits
    RECORD_NUMBER_MIN_LENGTH = 3
    RECORD_NUMBER_MAX_LENGTH = 50
    RECORD_VALUE_MIN = "0.01"
    RECORD_VALUE_MAX = "1000000"
    RECORD_MAX_ENCOUNTERS = 100
    ENCOUNTER_NUMBER_MAX_LENGTH = 50
    COMPETENCE_MIN_YEAR = 2020
