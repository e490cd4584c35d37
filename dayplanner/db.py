from __future__ import annotations
import sqlite3
from pathlib import Path
from typing import Optional, Union

DB_NAME = "dayplanner.sqlite3"

DEFAULT_SETTINGS = {
    "default_wake_time": "06:30",
    "default_sleep_time": "23:00",
    "sleep_duration_hours": "7.5",
    "daily_capacity_minutes": "840",
}


def data_dir(app_name: str = "DayPlanner") -> Path:
    # DAYPLANNER_HOME wins, otherwise the usual per-user data dir
    # macOS: ~/Library/Application Support/DayPlanner
    # Windows: %APPDATA%\DayPlanner
    override = _get_env("DAYPLANNER_HOME", "")
    if override:
        d = Path(override)
    else:
        home = Path.home()
        if _is_macos():
            base = home / "Library" / "Application Support"
        elif _is_windows():
            base = Path(_get_env("APPDATA", str(home)))
        else:
            base = home / ".local" / "share"
        d = base / app_name
    d.mkdir(parents=True, exist_ok=True)
    return d


def db_path() -> Path:
    return data_dir() / DB_NAME


def connect(path: Optional[Union[str, Path]] = None) -> sqlite3.Connection:
    """Open the database; pass ":memory:" for a throwaway one."""
    conn = sqlite3.connect(str(path) if path is not None else db_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def migrate(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS templates (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            priority INTEGER NOT NULL DEFAULT 3,
            is_mandatory INTEGER NOT NULL DEFAULT 0,
            duration_minutes INTEGER NOT NULL,
            min_duration_minutes INTEGER,
            scheduling_type TEXT NOT NULL DEFAULT 'flexible',
            default_time TEXT, -- HH:MM
            time_window TEXT NOT NULL DEFAULT 'anytime',
            depends_on TEXT NOT NULL DEFAULT '', -- CSV of template ids
            frequency TEXT NOT NULL DEFAULT 'none',
            recurrence_interval INTEGER NOT NULL DEFAULT 1,
            days_of_week TEXT NOT NULL DEFAULT '', -- CSV "1,3,5", 0=Sun
            day_of_month INTEGER,
            month INTEGER,
            start_date TEXT,
            end_date TEXT,
            end_after_occurrences INTEGER,
            custom_pattern TEXT, -- JSON
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT
        );

        CREATE TABLE IF NOT EXISTS instances (
            id TEXT PRIMARY KEY,
            template_id TEXT NOT NULL,
            date TEXT NOT NULL, -- YYYY-MM-DD
            status TEXT NOT NULL DEFAULT 'pending',
            scheduled_time TEXT,
            duration_minutes INTEGER NOT NULL,
            actual_duration INTEGER,
            completed_at TEXT,
            notes TEXT,
            modification_reason TEXT,
            depends_on TEXT NOT NULL DEFAULT '', -- CSV of instance ids
            created_at TEXT,
            modified_at TEXT,
            name TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            priority INTEGER NOT NULL DEFAULT 3,
            is_mandatory INTEGER NOT NULL DEFAULT 0,
            scheduling_type TEXT NOT NULL DEFAULT 'flexible',
            time_window TEXT NOT NULL DEFAULT 'anytime',
            default_time TEXT,
            min_duration_minutes INTEGER,
            UNIQUE(template_id, date)
        );

        CREATE INDEX IF NOT EXISTS idx_instances_date ON instances(date);

        CREATE TABLE IF NOT EXISTS sleep_overrides (
            date TEXT PRIMARY KEY, -- YYYY-MM-DD
            wake_time TEXT NOT NULL,
            sleep_time TEXT NOT NULL,
            duration_hours REAL -- NULL = keep the default duration
        );
        """
    )

    for key, value in DEFAULT_SETTINGS.items():
        if conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone() is None:
            conn.execute("INSERT INTO settings(key,value) VALUES(?,?)", (key, value))

    if conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone() is None:
        conn.execute("INSERT INTO meta(key,value) VALUES('schema_version','1')")

    conn.commit()


def _is_windows() -> bool:
    import sys
    return sys.platform.startswith("win")


def _is_macos() -> bool:
    import sys
    return sys.platform == "darwin"


def _get_env(k: str, default: str) -> str:
    import os
    return os.environ.get(k, default)
