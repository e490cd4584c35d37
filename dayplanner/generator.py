from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from .clock import DateLike, date_of_timestamp, date_range, format_date, now_iso, parse_date
from .models import InstanceStatus, TaskInstance, TaskTemplate
from .recurrence import should_generate, within_date_range
from .validation import validate_template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedTemplate:
    template_id: str
    template_name: str
    reason: str


@dataclass(frozen=True)
class GenerationError:
    template_id: str
    template_name: str
    error: str


@dataclass
class GenerationReport:
    date: str
    total_templates: int = 0
    generated: List[TaskInstance] = field(default_factory=list)
    skipped: List[SkippedTemplate] = field(default_factory=list)
    errors: List[GenerationError] = field(default_factory=list)


@dataclass
class RangeReport:
    start_date: str
    end_date: str
    daily: List[GenerationReport] = field(default_factory=list)

    @property
    def total_days(self) -> int:
        return len(self.daily)

    @property
    def total_generated(self) -> int:
        return sum(len(r.generated) for r in self.daily)

    @property
    def total_skipped(self) -> int:
        return sum(len(r.skipped) for r in self.daily)

    @property
    def total_errors(self) -> int:
        return sum(len(r.errors) for r in self.daily)


def new_instance_id() -> str:
    return uuid.uuid4().hex


def inactive_reason(template: TaskTemplate, d: date) -> Optional[str]:
    """Why a template is outside its active window on `d`, or None."""
    if not template.is_active:
        return "Template is inactive"
    if template.created_at and d < date_of_timestamp(template.created_at):
        return "Template created after this date"
    if not within_date_range(template.recurrence_rule, d):
        return "Template ended or not yet active"
    return None


def instance_from_template(template: TaskTemplate, on: DateLike) -> TaskInstance:
    """Snapshot template fields into a new pending instance.

    depends_on still holds template ids; resolve_instance_dependencies maps
    them onto same-date instances.
    """
    stamp = now_iso()
    return TaskInstance(
        id=new_instance_id(),
        template_id=template.id,
        date=format_date(on),
        status=InstanceStatus.PENDING,
        scheduled_time=None,
        duration_minutes=template.duration_minutes,
        depends_on=list(template.depends_on),
        created_at=stamp,
        modified_at=stamp,
        name=template.name,
        description=template.description,
        priority=template.priority,
        is_mandatory=template.is_mandatory,
        scheduling_type=template.scheduling_type,
        time_window=template.time_window,
        default_time=template.default_time,
        min_duration_minutes=template.min_duration_minutes,
    )


def resolve_instance_dependencies(
    instances: Iterable[TaskInstance], by_template: Dict[str, TaskInstance]
) -> None:
    """Rewrite template-id dependencies to the instance ids of the same date.

    References that do not resolve are left as they are so the dependency
    resolver can report them.
    """
    for inst in instances:
        inst.depends_on = [
            by_template[dep].id if dep in by_template else dep
            for dep in inst.depends_on
        ]


def generate_daily_instances(
    templates: Iterable[TaskTemplate],
    existing_instances: Iterable[TaskInstance],
    on: DateLike,
) -> GenerationReport:
    d = parse_date(on)
    day = d.isoformat()
    templates = list(templates)
    report = GenerationReport(date=day, total_templates=len(templates))

    by_template: Dict[str, TaskInstance] = {
        i.template_id: i for i in existing_instances if i.date == day
    }

    for t in templates:
        try:
            if t.id in by_template:
                report.skipped.append(SkippedTemplate(t.id, t.name, "Instance already exists"))
                continue

            reason = inactive_reason(t, d)
            if reason:
                report.skipped.append(SkippedTemplate(t.id, t.name, reason))
                continue

            if not should_generate(t, d):
                report.skipped.append(SkippedTemplate(t.id, t.name, "Does not match recurrence pattern"))
                continue

            validate_template(t)
            inst = instance_from_template(t, d)
            by_template[t.id] = inst
            report.generated.append(inst)
        except Exception as e:
            logger.warning("Could not generate %s for %s: %s", t.name or t.id, day, e)
            report.errors.append(GenerationError(t.id, t.name, str(e)))

    resolve_instance_dependencies(report.generated, by_template)

    logger.info(
        "Generated %s instance(s) for %s (%s skipped, %s errors)",
        len(report.generated), day, len(report.skipped), len(report.errors),
    )
    return report


def generate_instances_for_date_range(
    templates: Iterable[TaskTemplate],
    existing_instances: Iterable[TaskInstance],
    start: DateLike,
    end: DateLike,
) -> RangeReport:
    templates = list(templates)
    known = list(existing_instances)
    out = RangeReport(start_date=format_date(start), end_date=format_date(end))

    for d in date_range(start, end):
        report = generate_daily_instances(templates, known, d)
        known.extend(report.generated)
        out.daily.append(report)

    logger.info(
        "Generated %s instance(s) across %s day(s)", out.total_generated, out.total_days
    )
    return out
