import argparse
import json
import logging
import shutil
import sys
from typing import List, Optional, Sequence, Tuple
from colorama import Fore, Style

from chart import ChartNotFound, HelmChart, clear_log_context, configure_colored_logging, resolve_chart_path, set_log_context
from config import ConfigError, MirrorConfig
from image_locator import locate_chart
from mirror import MirrorExecutor, MirrorRecord
from mirror_path import build_catalog_mirror, build_push_mirror
from reference import try_normalize
import scheduler

logger = logging.getLogger(__name__)


def check_dependencies(required: Sequence[str]) -> None:
    """
    Ensure required CLI tools are available on PATH.
    Exits the program with an error if any are missing.
    """
    missing = [cmd for cmd in required if shutil.which(cmd) is None]
    if missing:
        logger.error(f"Missing required CLI tools: {', '.join(missing)}. Install them and ensure they are on PATH.")
        sys.exit(1)


def extract_records(chart_paths: Sequence[str], config: MirrorConfig) -> Tuple[List[MirrorRecord], int, int]:
    """
    Render each chart, locate its images and build catalog records.

    Returns:
        tuple: (records sorted and deduplicated, charts processed, charts skipped)
    """
    records = set()
    processed = 0
    skipped = 0
    for raw in chart_paths:
        try:
            chart = resolve_chart_path(raw)
        except ChartNotFound as e:
            logger.warning(f"Skipping non-existent directory: {e}")
            skipped += 1
            continue

        processed += 1
        set_log_context(chart.path, 0)
        try:
            logger.info(f"Processing chart: {chart.path}")
            set_log_context(chart.path, 1)
            images = locate_chart(HelmChart(chart, release_name=config.release_name))
            for image in sorted(images):
                ref = try_normalize(image)
                if ref is None:
                    continue
                mirror = build_catalog_mirror(ref, config.registry, config.prefix)
                records.add(MirrorRecord(original=ref, mirror=mirror, chart=chart))
            logger.info(f"Found {len(images)} images")
        finally:
            clear_log_context()

    ordered = sorted(records, key=lambda r: (str(r.original), str(r.mirror), r.chart.path))
    return ordered, processed, skipped


def to_push_records(records: Sequence[MirrorRecord], config: MirrorConfig) -> List[MirrorRecord]:
    """
    Re-target records at the pushable (hierarchy-preserving) mirror path and
    drop duplicate source images.
    """
    pushable = [
        MirrorRecord(original=r.original,
                     mirror=build_push_mirror(r.original, config.registry, config.prefix),
                     chart=r.chart)
        for r in records
    ]
    return scheduler.unique_by_original(pushable)


def format_records(records: Sequence[MirrorRecord], output_format: str) -> str:
    if output_format == "json":
        return json.dumps([r.to_dict() for r in records], indent=2)
    lines = ["# Docker Images Found", "# Format: original|mirror|chart"]
    lines.extend(r.to_line() for r in records)
    return "\n".join(lines)


def mirror_records(records: Sequence[MirrorRecord], config: MirrorConfig, executor: Optional[MirrorExecutor] = None) -> int:
    """
    Mirror records under the worker pool and log a per-image summary.
    Returns the process exit status.
    """
    if executor is None:
        executor = MirrorExecutor.for_registry(config.registry)
    if not config.dry_run and records and not executor.login(config.registry):
        logger.warning("Registry login failed; pushes may fail")
    report = scheduler.run(records, config.parallel_jobs, executor, dry_run=config.dry_run)
    for record in report.failed_records():
        logger.error(f"{Fore.RED}FAILED{Style.RESET_ALL} {record.original} -> {record.mirror}")
    return report.exit_code


def cmd_extract(args, config: MirrorConfig) -> int:
    check_dependencies(["helm"])
    records, processed, skipped = extract_records(args.charts, config)
    if processed == 0:
        logger.warning("All specified charts were skipped or not found")
        print(format_records([], config.output_format))
        logger.info(f"Charts processed: {processed}, Charts skipped: {skipped}")
        return 1
    print(format_records(records, config.output_format))
    unique = len({r.original for r in records})
    logger.info(f"Found {unique} unique images across all charts")
    return 0


def cmd_mirror(args, config: MirrorConfig) -> int:
    if not config.dry_run:
        check_dependencies(["docker"])
    records = []
    for raw in args.images:
        ref = try_normalize(raw)
        if ref is None:
            logger.warning(f"Skipping invalid image reference: {raw}")
            continue
        records.append(MirrorRecord(original=ref, mirror=build_push_mirror(ref, config.registry, config.prefix)))
    records = scheduler.unique_by_original(records)
    if not records:
        logger.error("No valid images specified")
        return 1
    return mirror_records(records, config)


def cmd_extract_and_mirror(args, config: MirrorConfig) -> int:
    check_dependencies(["helm"] if config.dry_run else ["helm", "docker"])
    records, processed, skipped = extract_records(args.charts, config)
    if processed == 0:
        logger.error(f"All specified charts were skipped or not found ({skipped} skipped)")
        return 1
    push_records = to_push_records(records, config)
    if not push_records:
        logger.warning("No images found in chart")
        return 0
    logger.info(f"Found {len(push_records)} unique images across {processed} charts")
    return mirror_records(push_records, config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chart-image-mirror",
        description="Extract container images from Helm charts and mirror them into an internal registry.",
        epilog="Environment variables: MIRROR_REGISTRY, MIRROR_PREFIX, DRY_RUN, PARALLEL_JOBS, OUTPUT_FORMAT, DEBUG, HELM_RELEASE_NAME",
    )
    parser.add_argument('--registry', required=False, help='Target mirror registry (or set MIRROR_REGISTRY; default: registry.internal.company.com)')
    parser.add_argument('--prefix', required=False, help='Repository path prefix under the registry (or set MIRROR_PREFIX; default: dockerhub)')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be mirrored without pulling or pushing (or set DRY_RUN=true)')
    parser.add_argument('--parallel', required=False, help='Number of parallel mirror jobs (or set PARALLEL_JOBS; default: 4)')
    parser.add_argument('--output', choices=['json', 'text'], required=False, help='Extraction output format (or set OUTPUT_FORMAT; default: json)')
    parser.add_argument('--release-name', required=False, help='Release name used for helm template (or set HELM_RELEASE_NAME)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging (or set DEBUG=true)')

    sub = parser.add_subparsers(dest='action', required=True)
    p_extract = sub.add_parser('extract', help='Extract images from Helm charts')
    p_extract.add_argument('charts', nargs='+', help='Chart directories')
    p_extract.set_defaults(func=cmd_extract)

    p_mirror = sub.add_parser('mirror', help='Mirror the given images')
    p_mirror.add_argument('images', nargs='+', help='Image references, e.g. nginx:latest redis:7.0')
    p_mirror.set_defaults(func=cmd_mirror)

    p_both = sub.add_parser('extract-and-mirror', help='Extract images from Helm charts and mirror them')
    p_both.add_argument('charts', nargs='+', help='Chart directories')
    p_both.set_defaults(func=cmd_extract_and_mirror)
    return parser


def cli(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = MirrorConfig.from_args(args)
    except ConfigError as e:
        configure_colored_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1
    configure_colored_logging(debug=config.debug)
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(cli())
