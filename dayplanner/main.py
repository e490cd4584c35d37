"""Command line front end.

Usage:
  dayplanner add-template "Morning run" --duration 45 --window morning --daily
  dayplanner generate 2025-03-03 --until 2025-03-09
  dayplanner schedule 2025-03-03
  dayplanner optimize 2025-03-03 --no-energy
  dayplanner sleep --wake 07:00 --sleep 23:30 --hours 7.5 --date 2025-03-08
"""
from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from datetime import timedelta
from typing import List, Optional

from .clock import now
from .db import connect, migrate
from .errors import SchedulerError
from .models import (
    CustomPattern,
    Frequency,
    RecurrenceRule,
    SchedulingType,
    TimeWindow,
    template_with_defaults,
)
from .optimizer import OptimizationOptions
from .query import sort_tasks
from .recurrence import next_occurrence
from .repository import Repository
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


def _days(s: str) -> List[int]:
    return [int(x) for x in s.split(",") if x.strip()]


def cmd_schedule(sched: Scheduler, args) -> int:
    result = sched.generate_schedule_for_date(args.date)
    sw = result.sleep_window
    print(f"Schedule for {result.date} (wake {sw.wake_time}, sleep {sw.sleep_time})")
    if not result.success:
        print(f"\nCannot schedule: {result.message}")
        for s in result.suggestions:
            print(f"  - {s}")
        return 1
    for e in result.schedule:
        flag = "*" if e.is_mandatory else " "
        print(f"  {e.scheduled_time or '--:--'} {flag} {e.name} ({e.duration_minutes} min, p{e.priority}) [{e.status.value}]")
    for e in result.blocked:
        print(f"  held back: {e.name} (a task it depends on was skipped)")
    print(f"\n{result.scheduled_tasks} of {result.total_tasks} task(s) scheduled")
    if result.conflicts and result.conflicts.unresolved:
        print(f"{result.conflicts.unresolved} conflict(s) left unresolved")
    return 0


def cmd_generate(sched: Scheduler, args) -> int:
    end = args.until or args.date
    report = sched.generate_instances_for_date_range(args.date, end)
    for day in report.daily:
        print(f"{day.date}: {len(day.generated)} created, {len(day.skipped)} skipped, {len(day.errors)} errors")
        for err in day.errors:
            print(f"    ! {err.template_name}: {err.error}")
    print(f"Total: {report.total_generated} instance(s) over {report.total_days} day(s)")
    return 1 if report.total_errors else 0


def cmd_deps(sched: Scheduler, args) -> int:
    report = sched.resolve_dependencies_for_date(args.date)
    print(f"Order for {args.date}:")
    for i, inst in enumerate(report.order, 1):
        print(f"  {i}. {inst.name} {inst.scheduled_time or ''}".rstrip())
    for w in report.warnings:
        print(f"  warning ({w.issue}): {w.details}")
    for c in report.conflicts:
        print(f"  conflict: {c.instance_name}: {c.details}")
    print(f"{len(report.adjusted)} task(s) moved after their dependencies")
    return 0


def cmd_conflicts(sched: Scheduler, args) -> int:
    report = sched.detect_and_resolve_conflicts(sched.repo.get_for_date(args.date), args.date)
    print(f"{report.total_conflicts} conflict(s) on {args.date}: {report.resolved} resolved, {report.unresolved} unresolved")
    for r in report.resolutions:
        print(f"  {r.type.value}: {r.strategy}")
    for r in report.unresolved_conflicts:
        print(f"  {r.type.value}: unresolved ({r.reason})")
    return 0 if not report.unresolved else 1


def cmd_optimize(sched: Scheduler, args) -> int:
    options = OptimizationOptions(
        prioritize_energy=not args.no_energy,
        respect_time_windows=not args.no_windows,
        minimize_gaps=not args.no_gaps,
        optimize_transitions=not args.no_transitions,
        consider_dependencies=not args.no_dependencies,
    )
    report = sched.optimize_scheduling_for_date(args.date, options)
    for imp in report.improvements:
        print(f"  {imp.instance_name}: {imp.reason} -> {imp.updates}")
    for f in report.failures:
        print(f"  ! {f.strategy} on {f.instance_id or 'schedule'}: {f.error}")
    print(f"Applied {report.optimized} of {len(report.improvements)} change(s)")
    return 0


def cmd_add_template(sched: Scheduler, args) -> int:
    if args.weekdays:
        rule = RecurrenceRule(frequency=Frequency.CUSTOM, custom_pattern=CustomPattern("weekdays"))
    elif args.days:
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=args.every, days_of_week=_days(args.days))
    elif args.monthly_day is not None:
        rule = RecurrenceRule(frequency=Frequency.MONTHLY, interval=args.every, day_of_month=args.monthly_day)
    elif args.daily:
        rule = RecurrenceRule(frequency=Frequency.DAILY, interval=args.every)
    else:
        rule = RecurrenceRule()
    if args.start or args.end:
        rule = replace(rule, start_date=args.start, end_date=args.end)

    template = template_with_defaults(
        id="",
        name=args.name,
        description=args.description,
        priority=args.priority,
        is_mandatory=args.mandatory,
        duration_minutes=args.duration,
        scheduling_type=SchedulingType.FIXED if args.at else SchedulingType.FLEXIBLE,
        default_time=args.at,
        time_window=TimeWindow(args.window),
        depends_on=args.after or [],
        recurrence_rule=rule,
    )
    saved = sched.repo.create_template(template)
    print(f"Created template {saved.id} ({saved.name})")
    upcoming = next_occurrence(saved, now().date() - timedelta(days=1))
    if upcoming:
        print(f"Next due: {upcoming.isoformat()}")
    return 0


def cmd_templates(sched: Scheduler, args) -> int:
    for t in sort_tasks(sched.repo.list_templates(), by=args.sort):
        state = "" if t.is_active else " (inactive)"
        print(f"  {t.id}  p{t.priority} {t.duration_minutes:>4} min  {t.name}{state}")
    return 0


def cmd_sleep(sched: Scheduler, args) -> int:
    repo = sched.repo
    if args.wake or args.sleep or args.hours is not None:
        current = repo.get_effective_sleep_window(args.date or now().date())
        wake = args.wake or current.wake_time
        sleep = args.sleep or current.sleep_time
        if args.date:
            repo.set_sleep_override(args.date, wake, sleep, args.hours)
        else:
            repo.set_default_sleep(wake, sleep, args.hours if args.hours is not None else current.duration_hours)
    sw = repo.get_effective_sleep_window(args.date or now().date())
    label = args.date or "default"
    print(f"Sleep ({label}): wake {sw.wake_time}, sleep {sw.sleep_time}, {sw.duration_hours} h")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dayplanner",
        description="Personal daily task scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", default=None, help="SQLite file (default: per-user data dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", help="Command")

    p = sub.add_parser("schedule", help="Lay out the day")
    p.add_argument("date")

    p = sub.add_parser("generate", help="Create task instances from templates")
    p.add_argument("date")
    p.add_argument("--until", default=None, help="Last date of the range (inclusive)")

    p = sub.add_parser("deps", help="Order the day's tasks by dependency")
    p.add_argument("date")

    p = sub.add_parser("conflicts", help="Detect and resolve conflicts")
    p.add_argument("date")

    p = sub.add_parser("optimize", help="Improve start times")
    p.add_argument("date")
    p.add_argument("--no-energy", action="store_true")
    p.add_argument("--no-windows", action="store_true")
    p.add_argument("--no-gaps", action="store_true")
    p.add_argument("--no-transitions", action="store_true")
    p.add_argument("--no-dependencies", action="store_true")

    p = sub.add_parser("add-template", help="Add a task template")
    p.add_argument("name")
    p.add_argument("--description", default="")
    p.add_argument("--priority", type=int, default=3)
    p.add_argument("--duration", type=int, default=30)
    p.add_argument("--mandatory", action="store_true")
    p.add_argument("--at", default=None, help="Fixed start time HH:MM")
    p.add_argument("--window", default="anytime", choices=[w.value for w in TimeWindow])
    p.add_argument("--after", action="append", help="Template id this one depends on")
    p.add_argument("--every", type=int, default=1, help="Recurrence interval")
    p.add_argument("--daily", action="store_true")
    p.add_argument("--days", default=None, help='Weekly on these days, e.g. "1,3,5" (0=Sun)')
    p.add_argument("--monthly-day", type=int, default=None, help="Day of month, -1 for the last")
    p.add_argument("--weekdays", action="store_true", help="Monday to Friday")
    p.add_argument("--start", default=None)
    p.add_argument("--end", default=None)

    p = sub.add_parser("templates", help="List templates")
    p.add_argument("--sort", default="priority", choices=["priority", "name", "duration", "created"])

    p = sub.add_parser("sleep", help="Show or change the sleep window")
    p.add_argument("--wake", default=None)
    p.add_argument("--sleep", default=None)
    p.add_argument("--hours", type=float, default=None)
    p.add_argument("--date", default=None, help="Override a single date")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.debug("Using database %s", args.db or "default location")
    conn = connect(args.db)
    migrate(conn)
    sched = Scheduler(Repository(conn))

    dispatch = {
        "schedule": cmd_schedule,
        "generate": cmd_generate,
        "deps": cmd_deps,
        "conflicts": cmd_conflicts,
        "optimize": cmd_optimize,
        "add-template": cmd_add_template,
        "templates": cmd_templates,
        "sleep": cmd_sleep,
    }
    try:
        return dispatch[args.command](sched, args)
    except (SchedulerError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
