"""
CLI for running and inspecting the retail pipeline.

Provides commands to run pipeline cycles, show per-stage progress, refresh
and print aggregate views.
"""

import argparse
import json
import signal
import sys
import threading
from typing import Any

from livetables.core.config import PipelineSettings, load_settings
from livetables.engine import StageGraph
from livetables.observability.logger import get_logger, setup_logger
from livetables.observability.metrics import start_metrics_server
from livetables.pipelines import build_retail_pipeline
from livetables.store.codec import encode_value

logger = get_logger(__name__)

# Set by signal handlers for graceful shutdown
_shutdown_event = threading.Event()


def signal_handler(signum, frame):  # type: ignore[no-untyped-def]
    """
    Handle shutdown signals (SIGINT, SIGTERM).

    The running generation of stages completes and commits; no new stage starts.
    """
    signal_name = signal.Signals(signum).name
    logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
    _shutdown_event.set()


def _print_json(payload: Any, stream=None) -> None:
    print(json.dumps(payload, indent=2, default=encode_value), file=stream or sys.stdout)


def _load(args: argparse.Namespace) -> tuple[PipelineSettings, StageGraph]:
    settings = load_settings(
        args.config,
        data_source_path=getattr(args, "data_source_path", None),
        storage_path=getattr(args, "storage_path", None),
        constraints_path=getattr(args, "constraints", None),
        log_level=getattr(args, "log_level", None),
    )
    setup_logger(level=settings.log_level, format_type=settings.log_format)
    return settings, build_retail_pipeline(settings)


def run_pipeline(args: argparse.Namespace) -> int:
    """
    Run one pipeline cycle, or cycles until interrupted with --continuous.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    _shutdown_event.clear()
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        _, graph = _load(args)

        if args.metrics_port:
            start_metrics_server(args.metrics_port)
            logger.info(f"Serving metrics on port {args.metrics_port}")

        cycles = 0
        failed = False
        while True:
            result = graph.run_all(cancel_event=_shutdown_event, raise_on_failure=False)
            cycles += 1
            failed = not result.succeeded

            _print_json({
                "cycle": cycles,
                "status": "success" if result.succeeded else "failed",
                "stages": [
                    {
                        "stage": r.stage_name,
                        "status": r.status,
                        "input_rows": r.input_rows,
                        "output_rows": r.output_rows,
                        "rejected_rows": r.rejected_rows,
                        "error": str(r.error) if r.error else None,
                    }
                    for r in result.stages
                ],
            })

            if not args.continuous or _shutdown_event.is_set():
                break
            if _shutdown_event.wait(args.poll_interval):
                break

        if _shutdown_event.is_set():
            logger.info("Shutdown complete")
        return 1 if failed else 0

    except Exception as e:
        logger.error(f"Pipeline run failed: {e}", exc_info=True)
        _print_json({"status": "error", "error": str(e)}, stream=sys.stderr)
        return 1


def show_status(args: argparse.Namespace) -> int:
    """Print committed progress of every stage."""
    try:
        _, graph = _load(args)
        _print_json({"stages": graph.status(), "views": graph.view_names})
        return 0
    except Exception as e:
        logger.error(f"Failed to read pipeline status: {e}", exc_info=True)
        _print_json({"status": "error", "error": str(e)}, stream=sys.stderr)
        return 1


def refresh_views(args: argparse.Namespace) -> int:
    """Recompute aggregate views without re-running the merge."""
    try:
        _, graph = _load(args)
        versions = graph.refresh_views(args.stage)
        _print_json({"status": "refreshed", "table_versions": versions})
        return 0
    except Exception as e:
        logger.error(f"Failed to refresh views: {e}", exc_info=True)
        _print_json({"status": "error", "error": str(e)}, stream=sys.stderr)
        return 1


def show_view(args: argparse.Namespace) -> int:
    """Print the rows of an aggregate view."""
    try:
        _, graph = _load(args)
        rows = graph.view(args.view)
        _print_json({"view": args.view, "rows": [dict(row) for row in rows]})
        return 0
    except KeyError:
        _print_json({"status": "error", "error": f"Unknown view: {args.view}"}, stream=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Failed to read view {args.view}: {e}", exc_info=True)
        _print_json({"status": "error", "error": str(e)}, stream=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="livetables",
        description="Run and inspect the incremental retail pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one cycle over new files
  %(prog)s --config config/pipeline.yaml run

  # Keep running, honouring per-stage trigger intervals
  %(prog)s --config config/pipeline.yaml run --continuous --poll-interval 30

  # Show per-stage progress
  %(prog)s --config config/pipeline.yaml status

  # Print a gold view
  %(prog)s --config config/pipeline.yaml show-view top_ten_customers
        """
    )
    parser.add_argument("--config", help="Path to pipeline settings YAML (optional)")
    parser.add_argument("--data-source-path", help="Directory of raw files (overrides settings)")
    parser.add_argument("--storage-path", help="Storage root (overrides settings)")
    parser.add_argument("--constraints", help="Quality constraints YAML (overrides settings)")
    parser.add_argument("--log-level", help="Log level (overrides settings)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    run_parser = subparsers.add_parser("run", help="Run the pipeline")
    run_parser.add_argument(
        "--continuous",
        action="store_true",
        help="Run cycles until interrupted"
    )
    run_parser.add_argument(
        "--poll-interval",
        type=float,
        default=10.0,
        help="Seconds between cycles in continuous mode (default: 10)"
    )
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port (optional)"
    )

    subparsers.add_parser("status", help="Show per-stage progress")

    refresh_parser = subparsers.add_parser("refresh-views", help="Recompute aggregate views")
    refresh_parser.add_argument("--stage", help="Keyed stage whose views to refresh (default: all)")

    view_parser = subparsers.add_parser("show-view", help="Print an aggregate view")
    view_parser.add_argument("view", help="View name, e.g. sales_by_country")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the pipeline CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "run":
        return run_pipeline(args)
    elif args.command == "status":
        return show_status(args)
    elif args.command == "refresh-views":
        return refresh_views(args)
    elif args.command == "show-view":
        return show_view(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
