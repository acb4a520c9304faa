"""Main entry point for Cluster Lens.

Replays recorded exchange records (one JSON object per line) through the
observation pipeline and prints each published graph as JSON.
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from cluster_lens.config import get_settings
from cluster_lens.logging import get_logger, setup_logging
from cluster_lens.observation.models import ClusterGraph, ExchangeRecord, InvalidRecordError
from cluster_lens.observation.pipeline import ObservationPipeline
from cluster_lens.sinks import CallbackGraphSink, GraphSink, WebhookGraphSink


def _print_graph(graph: ClusterGraph) -> None:
    print(json.dumps(graph.to_dict()), flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cluster-lens",
        description="Extract de-duplication cluster graphs from recorded GraphQL traffic.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override CLUSTER_LENS_LOG_LEVEL for this run",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay a JSON-lines file of exchange records")
    replay.add_argument("path", type=Path, help="File with one exchange record per line")
    replay.add_argument(
        "--cluster-id",
        default=None,
        help="After replaying, print the graph for this cluster id",
    )
    return parser


async def replay(path: Path, cluster_id: str | None = None) -> int:
    """Feed every record in ``path`` through a fresh pipeline.

    Returns a process exit code: 0 when at least one graph was found (or the
    requested cluster was found), 1 otherwise.
    """
    log = get_logger("cluster_lens.main")
    settings = get_settings()

    sink: GraphSink
    if settings.sink_url:
        sink = WebhookGraphSink(settings.sink_url, timeout=settings.sink_timeout_seconds)
    else:
        sink = CallbackGraphSink(_print_graph)

    pipeline = ObservationPipeline.from_settings(settings, sink=sink)
    pipeline.start()

    found = 0
    skipped = 0
    try:
        with path.open(encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    record = ExchangeRecord.from_dict(json.loads(line))
                except (ValueError, InvalidRecordError, AttributeError) as exc:
                    skipped += 1
                    log.warning("replay_line_skipped", line=line_no, error=str(exc))
                    continue
                if await pipeline.observe(record) is not None:
                    found += 1
    finally:
        await pipeline.stop()

    log.info("replay_complete", path=str(path), graphs=found, skipped=skipped)

    if cluster_id is not None:
        graph = pipeline.find_graph(cluster_id)
        if graph is None:
            log.warning("replay_cluster_not_found", cluster_id=cluster_id)
            return 1
        _print_graph(graph)
        return 0

    return 0 if found else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and run the requested command."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if not args.path.exists():
        get_logger("cluster_lens.main").error("replay_file_missing", path=str(args.path))
        return 2
    return asyncio.run(replay(args.path, args.cluster_id))


def run() -> None:
    """Run the application."""
    sys.exit(main())


if __name__ == "__main__":
    run()
