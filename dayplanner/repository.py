from __future__ import annotations
import json
import sqlite3
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .clock import DateLike, format_date, now_iso, parse_hhmm
from .models import (
    AppSettings,
    CustomPattern,
    Frequency,
    InstanceStatus,
    RecurrenceRule,
    SchedulingType,
    SleepWindow,
    TaskInstance,
    TaskTemplate,
    TimeWindow,
)
from .validation import validate_instance, validate_template


def _days_from_csv(s: str) -> List[int]:
    if not s.strip():
        return []
    return [int(x) for x in s.split(",")]


def _days_to_csv(days: List[int]) -> str:
    return ",".join(str(d) for d in sorted(set(days)))


def _ids_from_csv(s: str) -> List[str]:
    return [x for x in s.split(",") if x]


def _ids_to_csv(ids: List[str]) -> str:
    return ",".join(ids)


def _pattern_from_json(s: Optional[str]) -> Optional[CustomPattern]:
    if not s:
        return None
    d = json.loads(s)
    return CustomPattern(type=d["type"], day_of_week=d.get("day_of_week"), nth_week=d.get("nth_week"))


def _pattern_to_json(p: Optional[CustomPattern]) -> Optional[str]:
    if p is None:
        return None
    return json.dumps({"type": p.type, "day_of_week": p.day_of_week, "nth_week": p.nth_week})


_INSTANCE_COLUMNS = (
    "id", "template_id", "date", "status", "scheduled_time", "duration_minutes",
    "actual_duration", "completed_at", "notes", "modification_reason", "depends_on",
    "created_at", "modified_at", "name", "description", "priority", "is_mandatory",
    "scheduling_type", "time_window", "default_time", "min_duration_minutes",
)


class Repository:
    """SQLite-backed template store, instance store and settings provider.

    Instances read for a date are cached until `invalidate` is called or the
    repository itself writes to that date.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._by_date: Dict[str, List[TaskInstance]] = {}

    # ---------- Cache ----------
    def invalidate(self, date: Optional[DateLike] = None) -> None:
        if date is None:
            self._by_date.clear()
        else:
            self._by_date.pop(format_date(date), None)

    # ---------- Settings ----------
    def get_settings(self) -> AppSettings:
        wake = self._get_setting("default_wake_time", "06:30")
        sleep = self._get_setting("default_sleep_time", "23:00")
        return AppSettings(
            default_wake_time=self._valid_hhmm(wake, "06:30"),
            default_sleep_time=self._valid_hhmm(sleep, "23:00"),
            sleep_duration_hours=float(self._get_setting("sleep_duration_hours", "7.5")),
            daily_capacity_minutes=int(self._get_setting("daily_capacity_minutes", "840")),
        )

    def set_default_sleep(self, wake_time: str, sleep_time: str, duration_hours: float) -> None:
        parse_hhmm(wake_time)
        parse_hhmm(sleep_time)
        self._set_setting("default_wake_time", wake_time)
        self._set_setting("default_sleep_time", sleep_time)
        self._set_setting("sleep_duration_hours", str(float(duration_hours)))

    def set_daily_capacity_minutes(self, minutes: int) -> None:
        self._set_setting("daily_capacity_minutes", str(int(minutes)))

    def set_sleep_override(
        self, date: DateLike, wake_time: str, sleep_time: str, duration_hours: Optional[float] = None
    ) -> None:
        parse_hhmm(wake_time)
        parse_hhmm(sleep_time)
        self.conn.execute(
            "INSERT INTO sleep_overrides(date, wake_time, sleep_time, duration_hours) VALUES(?,?,?,?) "
            "ON CONFLICT(date) DO UPDATE SET wake_time=excluded.wake_time, "
            "sleep_time=excluded.sleep_time, duration_hours=excluded.duration_hours",
            (format_date(date), wake_time, sleep_time, duration_hours),
        )
        self.conn.commit()

    def clear_sleep_override(self, date: DateLike) -> None:
        self.conn.execute("DELETE FROM sleep_overrides WHERE date=?", (format_date(date),))
        self.conn.commit()

    def get_effective_sleep_window(self, date: DateLike) -> SleepWindow:
        settings = self.get_settings()
        r = self.conn.execute(
            "SELECT * FROM sleep_overrides WHERE date=?", (format_date(date),)
        ).fetchone()
        if r:
            hours = r["duration_hours"]
            return SleepWindow(
                wake_time=r["wake_time"],
                sleep_time=r["sleep_time"],
                duration_hours=settings.sleep_duration_hours if hours is None else float(hours),
            )
        return SleepWindow(
            wake_time=settings.default_wake_time,
            sleep_time=settings.default_sleep_time,
            duration_hours=settings.sleep_duration_hours,
        )

    def _get_setting(self, key: str, default: str) -> str:
        row = self.conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        return row["value"] if row else default

    def _set_setting(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT INTO settings(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, value),
        )
        self.conn.commit()

    def _valid_hhmm(self, s: str, default: str) -> str:
        try:
            parse_hhmm(s)
            return s
        except ValueError:
            return default

    # ---------- Templates ----------
    def _template_from_row(self, r: sqlite3.Row) -> TaskTemplate:
        rule = RecurrenceRule(
            frequency=Frequency(r["frequency"]),
            interval=r["recurrence_interval"],
            days_of_week=_days_from_csv(r["days_of_week"]),
            day_of_month=r["day_of_month"],
            month=r["month"],
            start_date=r["start_date"],
            end_date=r["end_date"],
            end_after_occurrences=r["end_after_occurrences"],
            custom_pattern=_pattern_from_json(r["custom_pattern"]),
        )
        return TaskTemplate(
            id=r["id"],
            name=r["name"],
            description=r["description"],
            priority=r["priority"],
            is_mandatory=bool(r["is_mandatory"]),
            duration_minutes=r["duration_minutes"],
            min_duration_minutes=r["min_duration_minutes"],
            scheduling_type=SchedulingType(r["scheduling_type"]),
            default_time=r["default_time"],
            time_window=TimeWindow(r["time_window"]),
            depends_on=_ids_from_csv(r["depends_on"]),
            recurrence_rule=rule,
            is_active=bool(r["is_active"]),
            created_at=r["created_at"],
        )

    def _template_values(self, t: TaskTemplate) -> tuple:
        rule = t.recurrence_rule
        return (
            t.name,
            t.description,
            t.priority,
            1 if t.is_mandatory else 0,
            t.duration_minutes,
            t.min_duration_minutes,
            t.scheduling_type.value,
            t.default_time,
            t.time_window.value,
            _ids_to_csv(t.depends_on),
            rule.frequency.value,
            rule.interval,
            _days_to_csv(rule.days_of_week),
            rule.day_of_month,
            rule.month,
            rule.start_date,
            rule.end_date,
            rule.end_after_occurrences,
            _pattern_to_json(rule.custom_pattern),
            1 if t.is_active else 0,
            t.created_at,
        )

    def list_templates(self, include_inactive: bool = True) -> List[TaskTemplate]:
        sql = "SELECT * FROM templates"
        if not include_inactive:
            sql += " WHERE is_active=1"
        rows = self.conn.execute(sql + " ORDER BY created_at ASC, id ASC").fetchall()
        return [self._template_from_row(r) for r in rows]

    def get_all_active(self) -> List[TaskTemplate]:
        return self.list_templates(include_inactive=False)

    def get_template(self, template_id: str) -> TaskTemplate:
        r = self.conn.execute("SELECT * FROM templates WHERE id=?", (template_id,)).fetchone()
        if not r:
            raise KeyError(template_id)
        return self._template_from_row(r)

    def _template_ids(self) -> List[str]:
        return [r["id"] for r in self.conn.execute("SELECT id FROM templates").fetchall()]

    def create_template(self, template: TaskTemplate) -> TaskTemplate:
        if not template.id:
            template = replace(template, id=uuid.uuid4().hex)
        if not template.created_at:
            template = replace(template, created_at=now_iso())
        validate_template(template, existing_ids=self._template_ids())
        self.conn.execute(
            """
            INSERT INTO templates(
                name, description, priority, is_mandatory, duration_minutes, min_duration_minutes,
                scheduling_type, default_time, time_window, depends_on, frequency, recurrence_interval,
                days_of_week, day_of_month, month, start_date, end_date, end_after_occurrences,
                custom_pattern, is_active, created_at, id
            ) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            self._template_values(template) + (template.id,),
        )
        self.conn.commit()
        return template

    def update_template(self, template: TaskTemplate) -> TaskTemplate:
        self.get_template(template.id)
        validate_template(template, existing_ids=self._template_ids())
        self.conn.execute(
            """
            UPDATE templates
            SET name=?, description=?, priority=?, is_mandatory=?, duration_minutes=?,
                min_duration_minutes=?, scheduling_type=?, default_time=?, time_window=?,
                depends_on=?, frequency=?, recurrence_interval=?, days_of_week=?, day_of_month=?,
                month=?, start_date=?, end_date=?, end_after_occurrences=?, custom_pattern=?,
                is_active=?, created_at=?
            WHERE id=?
            """,
            self._template_values(template) + (template.id,),
        )
        self.conn.commit()
        return template

    def deactivate_template(self, template_id: str) -> None:
        self.conn.execute("UPDATE templates SET is_active=0 WHERE id=?", (template_id,))
        self.conn.commit()

    def delete_template(self, template_id: str) -> None:
        # existing instances are kept; they carry their own snapshot
        self.conn.execute("DELETE FROM templates WHERE id=?", (template_id,))
        self.conn.commit()

    # ---------- Instances ----------
    def _instance_from_row(self, r: sqlite3.Row) -> TaskInstance:
        return TaskInstance(
            id=r["id"],
            template_id=r["template_id"],
            date=r["date"],
            status=InstanceStatus(r["status"]),
            scheduled_time=r["scheduled_time"],
            duration_minutes=r["duration_minutes"],
            actual_duration=r["actual_duration"],
            completed_at=r["completed_at"],
            notes=r["notes"],
            modification_reason=r["modification_reason"],
            depends_on=_ids_from_csv(r["depends_on"]),
            created_at=r["created_at"],
            modified_at=r["modified_at"],
            name=r["name"],
            description=r["description"],
            priority=r["priority"],
            is_mandatory=bool(r["is_mandatory"]),
            scheduling_type=SchedulingType(r["scheduling_type"]),
            time_window=TimeWindow(r["time_window"]),
            default_time=r["default_time"],
            min_duration_minutes=r["min_duration_minutes"],
        )

    def _instance_values(self, i: TaskInstance) -> tuple:
        return (
            i.id,
            i.template_id,
            i.date,
            i.status.value,
            i.scheduled_time,
            i.duration_minutes,
            i.actual_duration,
            i.completed_at,
            i.notes,
            i.modification_reason,
            _ids_to_csv(i.depends_on),
            i.created_at,
            i.modified_at,
            i.name,
            i.description,
            i.priority,
            1 if i.is_mandatory else 0,
            i.scheduling_type.value,
            i.time_window.value,
            i.default_time,
            i.min_duration_minutes,
        )

    def get_for_date(self, date: DateLike) -> List[TaskInstance]:
        day = format_date(date)
        cached = self._by_date.get(day)
        if cached is None:
            rows = self.conn.execute(
                "SELECT * FROM instances WHERE date=? ORDER BY created_at ASC, id ASC", (day,)
            ).fetchall()
            cached = [self._instance_from_row(r) for r in rows]
            self._by_date[day] = cached
        # callers get copies so in-memory edits never leak into the cache
        return [i.copy() for i in cached]

    def get_instance(self, instance_id: str) -> TaskInstance:
        r = self.conn.execute("SELECT * FROM instances WHERE id=?", (instance_id,)).fetchone()
        if not r:
            raise KeyError(instance_id)
        return self._instance_from_row(r)

    def create(self, instance: TaskInstance) -> TaskInstance:
        """Insert an instance. A second one for the same (template, date) raises sqlite3.IntegrityError."""
        validate_instance(instance)
        if not instance.created_at:
            instance.created_at = now_iso()
        if not instance.modified_at:
            instance.modified_at = instance.created_at
        placeholders = ",".join("?" for _ in _INSTANCE_COLUMNS)
        self.conn.execute(
            f"INSERT INTO instances({','.join(_INSTANCE_COLUMNS)}) VALUES({placeholders})",
            self._instance_values(instance),
        )
        self.conn.commit()
        self.invalidate(instance.date)
        return instance

    def update(self, instance_id: str, patch: Dict[str, Any], reason: Optional[str] = None) -> TaskInstance:
        current = self.get_instance(instance_id)
        bad = set(patch) - set(_INSTANCE_COLUMNS[1:])
        if bad:
            raise KeyError(f"cannot update field(s): {sorted(bad)}")
        updated = replace(current, **patch)
        if reason is not None:
            updated.modification_reason = reason
        updated.modified_at = now_iso()
        validate_instance(updated)

        assignments = ",".join(f"{c}=?" for c in _INSTANCE_COLUMNS[1:])
        self.conn.execute(
            f"UPDATE instances SET {assignments} WHERE id=?",
            self._instance_values(updated)[1:] + (instance_id,),
        )
        self.conn.commit()
        self.invalidate(current.date)
        self.invalidate(updated.date)
        return updated

    def mark_completed(
        self, instance_id: str, actual_duration: Optional[int] = None, notes: Optional[str] = None
    ) -> TaskInstance:
        return self.update(
            instance_id,
            {
                "status": InstanceStatus.COMPLETED,
                "completed_at": now_iso(),
                "actual_duration": actual_duration,
                "notes": notes,
            },
            "Marked as completed by user",
        )

    def mark_skipped(self, instance_id: str, reason: Optional[str] = None) -> TaskInstance:
        return self.update(
            instance_id, {"status": InstanceStatus.SKIPPED, "notes": reason}, "Skipped by user"
        )

    def postpone(self, instance_id: str, new_date: DateLike, reason: Optional[str] = None) -> TaskInstance:
        """Move an instance to another day, pending again, with no time set."""
        day = format_date(new_date)
        return self.update(
            instance_id,
            {"date": day, "status": InstanceStatus.PENDING, "scheduled_time": None, "notes": reason},
            f"Postponed to {day}",
        )

    def delete_instance(self, instance_id: str) -> None:
        current = self.get_instance(instance_id)
        self.conn.execute("DELETE FROM instances WHERE id=?", (instance_id,))
        self.conn.commit()
        self.invalidate(current.date)
