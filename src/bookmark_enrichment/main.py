"""Main entry point for bookmark enrichment."""

import argparse
import logging
import sys
from pathlib import Path

from .agent.run_controller import RunController
from .config.loader import Config, load_config
from .models.run_state import ProgressEvent
from .tools.storage_tool import write_failure_report

logger = logging.getLogger(__name__)


def read_urls(path: str | Path) -> list[str]:
    """One URL per line; blank lines and # comments are ignored."""
    urls = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)
    return urls


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enrich bookmarks with research, page content and AI insights"
    )
    parser.add_argument("urls", nargs="*", help="Bookmark URLs to enrich")
    parser.add_argument("-i", "--input", help="File with one URL per line")
    parser.add_argument(
        "-c",
        "--config",
        default="config/config.yaml",
        help="Path to config file (YAML or JSON)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--concurrency", type=int, help="Number of concurrent workers")
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Re-enrich URLs even if a complete result is stored",
    )
    parser.add_argument("--stagger-ms", type=int, help="Delay between worker starts (ms)")
    parser.add_argument("--no-research", action="store_true", help="Skip the research stage")
    parser.add_argument("--no-extraction", action="store_true", help="Skip the extraction stage")
    parser.add_argument(
        "--no-classification", action="store_true", help="Skip the classification stage"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config)
    if config_path.exists():
        config = load_config(config_path)
    elif args.config == build_parser().get_default("config"):
        logger.info("No config at %s, using defaults", config_path)
        config = Config()
    else:
        print(f"Config not found: {config_path}", file=sys.stderr)
        return 1

    urls = list(args.urls)
    if args.input:
        urls.extend(read_urls(args.input))
    if not urls:
        print("No URLs given", file=sys.stderr)
        return 1

    updates = {}
    if args.concurrency is not None:
        updates["concurrency_limit"] = max(1, args.concurrency)
    if args.force_refresh:
        updates["force_refresh"] = True
    if args.stagger_ms is not None:
        updates["stagger_delay_ms"] = max(0, args.stagger_ms)
    if args.no_research:
        updates["run_research"] = False
    if args.no_extraction:
        updates["run_extraction"] = False
    if args.no_classification:
        updates["run_classification"] = False
    options = config.run.model_copy(update=updates)

    controller = RunController(config)

    def log_progress(event: ProgressEvent) -> None:
        if event.warning:
            logger.warning(event.warning)
        if event.stage is not None and event.stage.value in ("done", "failed", "cancelled"):
            logger.info(
                "[%d/%d] %s -> %s (active %d, failed %d, cancelled %d)",
                event.completed_count + event.failed_count + event.cancelled_count,
                event.total_count,
                event.url,
                event.stage.value,
                event.active_count,
                event.failed_count,
                event.cancelled_count,
            )

    controller.on_progress(log_progress)
    controller.start(urls, options)
    try:
        while not controller.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, finishing in-flight stages...")
        controller.abort()
        controller.wait()

    state = controller.snapshot()
    output_config = config.output_config
    if output_config.export_path:
        controller.store.export_jsonl(output_config.export_path)
    if output_config.failure_report_path:
        write_failure_report(output_config.failure_report_path, controller.failures())

    print(
        f"Processed {state.total_jobs} bookmarks: {len(state.completed)} completed, "
        f"{len(state.failed)} failed, {len(state.cancelled)} cancelled. "
        f"Results saved to {output_config.storage_path}"
    )
    for warning in state.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
