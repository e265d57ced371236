"""
Result aggregator: reduces one run's outcomes into an AuditReport.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .catalog import Catalog
from .core.base_check import CheckResult
from .core.models import (
    AuditReport,
    Category,
    CheckError,
    CheckOutcome,
    Finding,
    Severity,
    empty_histogram,
)

logger = logging.getLogger(__name__)


class Aggregator:
    """
    Сводит результаты запуска в отчёт.

    - CheckError превращается в CheckOutcome с уровнем unevaluated_severity
    - гистограммы по категориям и общая
    - общий ранг: наивысший уровень среди находок, при равенстве — меньший result_id
    - находки отсортированы по result_id
    """

    def __init__(self, catalog: Catalog, unevaluated_severity: Severity = Severity.LOW):
        self.catalog = catalog
        self.unevaluated_severity = unevaluated_severity

    def normalize(self, result: CheckResult) -> CheckOutcome:
        """Привести результат к единому виду CheckOutcome."""
        if isinstance(result, CheckError):
            return CheckOutcome(
                result_id=result.result_id,
                severity=self.unevaluated_severity,
                error=result,
            )
        return result

    def aggregate(
        self,
        results: Iterable[CheckResult],
        duration_seconds: float = 0.0,
        cancelled: bool = False,
        omitted_ids: Iterable[int] = (),
        timestamp: Optional[datetime] = None,
    ) -> AuditReport:
        """
        Построить отчёт.

        Args:
            results: Результаты в любом порядке
            duration_seconds: Длительность запуска
            cancelled: Запуск был отменён
            omitted_ids: Проверки, не попавшие в отчёт из-за отмены

        Returns:
            AuditReport
        """
        outcomes = [self.normalize(r) for r in results]
        findings = sorted(
            (self._finding(outcome) for outcome in outcomes),
            key=lambda f: (f.result_id, f.severity, f.summary),
        )

        histogram = empty_histogram()
        by_category: Dict[Category, Dict[Severity, int]] = {}
        for finding in findings:
            histogram[finding.severity] += 1
            by_category.setdefault(finding.category, empty_histogram())[finding.severity] += 1

        rank, rank_id = self.overall_rank(findings)
        logger.info(
            f"Aggregated {len(findings)} findings, overall rank: "
            f"{rank.label if rank is not None else 'none'}"
        )

        return AuditReport(
            timestamp=timestamp or datetime.now(),
            findings=findings,
            histogram=histogram,
            histogram_by_category=dict(sorted(by_category.items(), key=lambda item: item[0].value)),
            overall_rank=rank,
            rank_result_id=rank_id,
            duration_seconds=duration_seconds,
            cancelled=cancelled,
            omitted_ids=sorted(omitted_ids),
        )

    @staticmethod
    def overall_rank(findings: List[Finding]) -> Tuple[Optional[Severity], Optional[int]]:
        if not findings:
            return None, None
        top = min(findings, key=lambda f: (-f.severity, f.result_id))
        return top.severity, top.result_id

    def _finding(self, outcome: CheckOutcome) -> Finding:
        if outcome.result_id in self.catalog:
            category = self.catalog.get(outcome.result_id).category
        else:
            # Result from a unit outside this catalog; keep it rather than drop it
            logger.warning(f"Result {outcome.result_id} has no catalog entry")
            category = Category.WINDOWS

        return Finding(
            result_id=outcome.result_id,
            category=category,
            severity=outcome.severity,
            summary=outcome.summary,
            result_code=outcome.result_code,
            error_kind=outcome.error.kind if outcome.error is not None else None,
        )
