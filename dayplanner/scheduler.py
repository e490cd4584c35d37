from __future__ import annotations
import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from . import conflicts as conflict_pass
from . import generator
from .classifier import TaskClassifier
from .clock import DateLike, date_range, format_date
from .conflicts import ConflictReport
from .dependencies import DependencyReport, resolve_dependencies
from .engine import ScheduleResult, build_schedule
from .errors import ValidationError
from .generator import GenerationError, GenerationReport, RangeReport
from .models import TaskInstance
from .optimizer import OptimizationFailure, OptimizationOptions, OptimizationReport, optimize
from .repository import Repository

logger = logging.getLogger(__name__)

# what a store write can fail with; anything else is a bug and propagates
STORE_ERRORS = (sqlite3.Error, ValidationError, KeyError)


@dataclass
class DailyRun:
    generation: GenerationReport
    dependencies: Optional[DependencyReport] = None
    conflicts: Optional[ConflictReport] = None


class Scheduler:
    """Runs the scheduling passes against a Repository and writes the results back."""

    def __init__(self, repo: Repository, classifier: Optional[TaskClassifier] = None):
        self.repo = repo
        self.classifier = classifier

    # ---------- Schedule ----------
    def generate_schedule_for_date(self, date: DateLike) -> ScheduleResult:
        day = format_date(date)
        settings = self.repo.get_settings()
        return build_schedule(
            self.repo.get_all_active(),
            self.repo.get_for_date(day),
            self.repo.get_effective_sleep_window(day),
            day,
            capacity_minutes=settings.daily_capacity_minutes,
        )

    # ---------- Generation ----------
    def generate_daily_instances(self, date: DateLike) -> DailyRun:
        day = format_date(date)
        report = generator.generate_daily_instances(
            self.repo.get_all_active(), self.repo.get_for_date(day), day
        )
        report.generated = self._persist_new(report)
        run = DailyRun(generation=report)
        if not report.generated:
            return run

        run.dependencies = self.resolve_dependencies_for_date(day)
        run.conflicts = self.detect_and_resolve_conflicts(self.repo.get_for_date(day), day)
        return run

    def generate_instances_for_date_range(self, start: DateLike, end: DateLike) -> RangeReport:
        out = RangeReport(start_date=format_date(start), end_date=format_date(end))
        for d in date_range(start, end):
            out.daily.append(self.generate_daily_instances(d).generation)
        logger.info(
            "Created %s instance(s) from %s to %s", out.total_generated, out.start_date, out.end_date
        )
        return out

    def _persist_new(self, report: GenerationReport) -> List[TaskInstance]:
        saved: List[TaskInstance] = []
        for inst in report.generated:
            try:
                saved.append(self.repo.create(inst))
            except STORE_ERRORS as e:
                logger.warning("Could not save %s for %s: %s", inst.name or inst.template_id, report.date, e)
                report.errors.append(GenerationError(inst.template_id, inst.name, str(e)))
        return saved

    # ---------- Dependencies ----------
    def resolve_dependencies_for_date(self, date: DateLike) -> DependencyReport:
        day = format_date(date)
        report = resolve_dependencies(self.repo.get_for_date(day), day)
        self._save_all(report.adjusted, ("scheduled_time",))
        return report

    # ---------- Conflicts ----------
    def detect_and_resolve_conflicts(self, instances: Sequence[TaskInstance], date: DateLike) -> ConflictReport:
        day = format_date(date)
        instances = list(instances)
        capacity = self.repo.get_settings().daily_capacity_minutes
        report = conflict_pass.detect_and_resolve_conflicts(instances, day, capacity)
        changed = set(report.changed_instance_ids())
        self._save_all((i for i in instances if i.id in changed), ("scheduled_time", "status"))
        return report

    # ---------- Optimization ----------
    def optimize_scheduling_for_date(
        self, date: DateLike, options: Optional[OptimizationOptions] = None
    ) -> OptimizationReport:
        day = format_date(date)
        report = optimize(self.repo.get_for_date(day), day, options, self.classifier)
        applied = 0
        for imp in report.improvements:
            try:
                self.repo.update(imp.instance_id, imp.updates, imp.reason)
                applied += 1
            except STORE_ERRORS as e:
                logger.warning("Could not apply %s to %s: %s", imp.strategy, imp.instance_id, e)
                report.failures.append(OptimizationFailure(imp.instance_id, imp.strategy, str(e)))
        report.optimized = applied
        logger.info("Applied %s of %s optimization(s) for %s", applied, len(report.improvements), day)
        return report

    def _save_all(self, instances: Iterable[TaskInstance], fields: Sequence[str]) -> None:
        for inst in instances:
            try:
                self.repo.update(
                    inst.id, {f: getattr(inst, f) for f in fields}, inst.modification_reason
                )
            except STORE_ERRORS as e:
                logger.warning("Could not save changes to %s: %s", inst.id, e)
