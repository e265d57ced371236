"""
CLI interface for the host security audit.

Usage:
    python -m hostaudit.main                        # Run every check
    python -m hostaudit.main --checks 4 12 15       # Run selected checks
    python -m hostaudit.main --list                 # List the catalog
    python -m hostaudit.main --output-format json   # JSON output
    python -m hostaudit.main --output-file report.md
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from hostaudit.accessors.base import AccessorBundle
from hostaudit.aggregator import Aggregator
from hostaudit.catalog import Catalog, build_default_catalog
from hostaudit.config import AuditConfig
from hostaudit.core.errors import CatalogError
from hostaudit.core.models import AuditReport, CheckError, Severity
from hostaudit.reports.generator import ReportGenerator
from hostaudit.runner import Runner


# Setup logging
def setup_logging(verbose: bool = False):
    """Настроить логирование."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None):
    """Парсинг аргументов командной строки."""
    parser = argparse.ArgumentParser(
        description='Host privacy and security audit',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every check
  hostaudit

  # Run selected checks only
  hostaudit --checks 4 12 15

  # Generate JSON report
  hostaudit --output-format json

  # Tighter limits
  hostaudit --concurrency 4 --timeout 5
        """
    )

    # Selection
    parser.add_argument(
        '--checks',
        type=int,
        nargs='+',
        metavar='ID',
        help='Run only these result ids (default: all)'
    )
    parser.add_argument(
        '--list',
        action='store_true',
        help='List available checks and exit'
    )

    # Execution
    parser.add_argument(
        '--concurrency',
        type=int,
        help='Maximum number of checks running at once'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Per-check timeout in seconds'
    )

    # Output options
    parser.add_argument(
        '--output-format',
        choices=['markdown', 'json'],
        default='markdown',
        help='Output format (default: markdown)'
    )
    parser.add_argument(
        '--output-file',
        type=str,
        help='Output file path (default: auto-generated in audit_reports/)'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        help='Output directory (default: audit_reports/)'
    )

    # Other options
    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '--no-summary',
        action='store_true',
        help='Skip printing summary to console'
    )

    return parser.parse_args(argv)


def build_config(args) -> AuditConfig:
    """Конфигурация из окружения с учётом аргументов CLI."""
    overrides = {}
    if args.concurrency is not None:
        overrides['concurrency_limit'] = args.concurrency
    if args.timeout is not None:
        overrides['per_check_timeout_seconds'] = args.timeout
    if args.output_dir:
        overrides['report_output_dir'] = Path(args.output_dir)
    return AuditConfig(**overrides)


def print_catalog(catalog: Catalog):
    for entry in catalog:
        print(f"{entry.result_id:>4}  {entry.category.value:<12} {entry.name}")


def log_progress(done: int, total: int, result):
    if isinstance(result, CheckError):
        logger.info(f"[{done}/{total}] Check {result.result_id}: could not evaluate ({result.kind.value})")
    else:
        logger.info(f"[{done}/{total}] Check {result.result_id}: {result.severity.label}")


def sigint_handler(runner: Runner, loop: asyncio.AbstractEventLoop):
    """
    Обработчик Ctrl-C: отмена запуска через event loop.

    Python вызывает обработчик сигнала в главном потоке между байткодами,
    поэтому сам он только ставит cancel() в очередь loop.
    """
    def handler(signum, frame):
        loop.call_soon_threadsafe(runner.cancel)

    return handler


async def run_audit(
    config: AuditConfig,
    catalog: Catalog,
    accessors: AccessorBundle,
    check_ids: Optional[List[int]] = None,
) -> AuditReport:
    """
    Выполнить проверки и собрать отчёт.

    Ctrl-C отменяет запуск: отчёт строится из уже завершённых проверок.

    Raises:
        CatalogError: фатальная ошибка каталога/запуска
    """
    runner = Runner.from_config(catalog, accessors, config, progress=log_progress)
    if accessors.files is not None:
        runner.register_resource(accessors.files)

    previous_handler = signal.signal(signal.SIGINT, sigint_handler(runner, asyncio.get_running_loop()))
    try:
        if check_ids:
            run = await runner.run_subset(check_ids)
        else:
            run = await runner.run_all()
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        await runner.cleanup()

    aggregator = Aggregator(catalog, unevaluated_severity=config.unevaluated_severity)
    return aggregator.aggregate(
        run.results,
        duration_seconds=run.duration_seconds,
        cancelled=run.cancelled,
        omitted_ids=run.omitted_ids,
    )


def write_reports(args, config: AuditConfig, report: AuditReport) -> List[str]:
    generator = ReportGenerator(output_dir=config.report_output_dir)

    if args.output_file:
        output_path = Path(args.output_file)
        # Determine format from extension if it contradicts the flag
        if args.output_format == 'markdown' and output_path.suffix == '.json':
            format = 'json'
        elif args.output_format == 'json' and output_path.suffix == '.md':
            format = 'markdown'
        else:
            format = args.output_format
        return [generator.generate_report(report, format=format, output_file=output_path)]

    if args.output_format == 'json':
        return [generator.generate_json_report(report)]

    paths = []
    if config.generate_markdown:
        paths.append(generator.generate_markdown_report(report))
    if config.generate_json:
        paths.append(generator.generate_json_report(report))
    return paths


async def main(argv: Optional[List[str]] = None) -> int:
    """Главная функция. Возвращает код выхода."""
    load_dotenv()
    args = parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except ValidationError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    try:
        catalog = build_default_catalog(config)
    except CatalogError as e:
        logger.error(f"❌ Invalid check catalog: {e}")
        return 1

    if args.list:
        print_catalog(catalog)
        return 0

    logger.info("Starting host audit")
    logger.info("=" * 60)

    try:
        report = await run_audit(config, catalog, AccessorBundle.live(), args.checks)
    except CatalogError as e:
        logger.error(f"❌ Audit failed: {e}")
        return 1

    report_paths = write_reports(args, config, report)

    logger.info("✅ Audit complete!" if not report.cancelled else "⚠️  Audit cancelled, partial report")
    logger.info(f"   Duration: {report.duration_seconds:.2f}s")
    for path in report_paths:
        logger.info(f"   Report: {path}")

    if not args.no_summary:
        ReportGenerator(output_dir=config.report_output_dir).print_summary(report)

    # Exit with error code if critical findings
    critical_count = report.histogram[Severity.CRITICAL]
    if critical_count > 0:
        logger.error(f"❌ {critical_count} CRITICAL findings!")
        return 1
    return 0


def cli():
    """Точка входа console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
