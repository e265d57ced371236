"""
Report generator for audit results.

Generates:
- Markdown reports for human reading
- JSON reports for machine processing
- Console summary
"""

import json
import logging
from pathlib import Path
from typing import Optional

from ..core.models import AuditReport, Severity

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🟢",
    Severity.INFO: "⚪",
}

# Severities shown in full in the markdown report
DETAILED_SEVERITIES = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM)


class ReportGenerator:
    """Генератор отчётов аудита."""

    def __init__(self, output_dir: Optional[Path] = None):
        """
        Args:
            output_dir: Директория для сохранения отчётов (по умолчанию audit_reports/)
        """
        self.output_dir = Path(output_dir) if output_dir else Path("audit_reports")

    def generate_report(self, report: AuditReport, format: str = "markdown",
                        output_file: Optional[Path] = None) -> str:
        """
        Генерация отчёта.

        Args:
            report: Данные аудита
            format: Формат отчёта ("markdown" или "json")
            output_file: Явный путь к файлу (иначе имя генерируется по времени)

        Returns:
            Путь к сгенерированному файлу
        """
        if format == "json":
            return self.generate_json_report(report, output_file)
        return self.generate_markdown_report(report, output_file)

    def _target(self, report: AuditReport, suffix: str, output_file: Optional[Path]) -> Path:
        if output_file is not None:
            path = Path(output_file)
        else:
            timestamp_str = report.timestamp.strftime("%Y%m%d_%H%M%S")
            path = self.output_dir / f"audit_report_{timestamp_str}.{suffix}"
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def render_markdown(self, report: AuditReport) -> str:
        lines = []

        # Header
        lines.append("# Host Security Audit Report")
        lines.append("")
        lines.append(f"**Date:** {report.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
        if report.cancelled:
            lines.append("")
            lines.append(f"**⚠️ Run was cancelled.** Omitted checks: {', '.join(map(str, report.omitted_ids)) or 'none'}")
        lines.append("")

        # Executive Summary
        lines.append("## Executive Summary")
        lines.append("")
        lines.append(f"- **Total Findings:** {report.total_findings}")
        if report.overall_rank is not None:
            lines.append(
                f"- **Overall Rank:** {SEVERITY_EMOJI[report.overall_rank]} "
                f"{report.overall_rank.label.upper()} (check {report.rank_result_id})"
            )
        for severity in sorted(Severity, reverse=True):
            lines.append(f"- {SEVERITY_EMOJI[severity]} **{severity.label.capitalize()}:** {report.histogram[severity]}")
        lines.append("")

        # By Category
        lines.append("## Findings by Category")
        lines.append("")
        lines.append("| Category | " + " | ".join(s.label for s in sorted(Severity, reverse=True)) + " |")
        lines.append("|---" * (len(Severity) + 1) + "|")
        for category, histogram in report.histogram_by_category.items():
            counts = " | ".join(str(histogram[s]) for s in sorted(Severity, reverse=True))
            lines.append(f"| {category.value} | {counts} |")
        lines.append("")

        for severity in DETAILED_SEVERITIES:
            findings = report.get_findings(severity)
            if not findings:
                continue
            lines.append(f"## {SEVERITY_EMOJI[severity]} {severity.label.capitalize()} Findings")
            lines.append("")
            for finding in findings:
                lines.append(finding.to_markdown())

        unevaluated = report.get_unevaluated()
        if unevaluated:
            lines.append("## Checks That Could Not Be Evaluated")
            lines.append("")
            for finding in unevaluated:
                lines.append(f"- Check {finding.result_id} ({finding.category.value}): {finding.summary}")
            lines.append("")

        # Footer
        lines.append("---")
        lines.append(f"*Audit completed in {report.duration_seconds:.2f} seconds*")
        return "\n".join(lines)

    def generate_markdown_report(self, report: AuditReport, output_file: Optional[Path] = None) -> str:
        """
        Генерация Markdown отчёта.

        Returns:
            Путь к файлу отчёта
        """
        filepath = self._target(report, "md", output_file)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(self.render_markdown(report))
        logger.info(f"Markdown report written to {filepath}")
        return str(filepath)

    def generate_json_report(self, report: AuditReport, output_file: Optional[Path] = None) -> str:
        """
        Генерация JSON отчёта.

        Returns:
            Путь к файлу отчёта
        """
        filepath = self._target(report, "json", output_file)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"JSON report written to {filepath}")
        return str(filepath)

    def print_summary(self, report: AuditReport):
        """Вывести краткую сводку в консоль."""

        print("\n" + "=" * 60)
        print("AUDIT SUMMARY")
        print("=" * 60)
        print(f"\nTotal Findings: {report.total_findings}")
        print(f"Duration: {report.duration_seconds:.2f}s")
        if report.overall_rank is not None:
            print(f"Overall Rank: {report.overall_rank.label.upper()} (check {report.rank_result_id})")
        if report.cancelled:
            print(f"Cancelled: {len(report.omitted_ids)} checks omitted")

        print("\nBy Severity:")
        for severity in sorted(Severity, reverse=True):
            print(f"  {SEVERITY_EMOJI[severity]} {severity.label.capitalize()}: {report.histogram[severity]}")

        print("\nBy Category:")
        for category, histogram in report.histogram_by_category.items():
            print(f"  - {category.value}: {sum(histogram.values())}")

        print(f"\nCould not evaluate: {len(report.get_unevaluated())}")
        print("\n" + "=" * 60)
