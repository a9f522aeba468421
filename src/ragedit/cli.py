"""Command line entry point: ingest sources and run streamed edits."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from ragedit.completion import encode_sse
from ragedit.config import Settings, get_settings
from ragedit.errors import IngestionError, QuotaExceededError, RageditError
from ragedit.ingestion import ContentSource
from ragedit.metrics.observability import configure_logging
from ragedit.models import RetrievalQuery, StreamState
from ragedit.pipeline import build_pipeline


def source_from_argument(value: str) -> ContentSource:
    if value.startswith(("http://", "https://")):
        return ContentSource.url(value)
    if value.startswith("rendered+") and value[len("rendered+") :].startswith(("http://", "https://")):
        return ContentSource.rendered_url(value[len("rendered+") :])
    return ContentSource.file(value)


def parse_region(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    start, sep, end = value.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError("Region must look like START:END")
    return int(start), int(end)


async def run_ingest(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = build_pipeline(settings)
    summaries = []
    status = 0
    for index, value in enumerate(args.sources):
        document_id = args.document_id if args.document_id and len(args.sources) == 1 else f"doc-{index + 1}"
        try:
            snapshot, result = await pipeline.add_source(
                document_id,
                source_from_argument(value),
                dataset_id=args.dataset_id,
            )
        except IngestionError as exc:
            print(f"Skipping {value}: {exc}", file=sys.stderr)
            status = 1
            continue
        summaries.append(
            {
                "source": value,
                "document_id": snapshot.document_id,
                "version": snapshot.version,
                "characters": len(snapshot.text),
                "indexed": result.indexed,
                "skipped": result.skipped,
            },
        )
    await pipeline.indexer.drain()
    print(json.dumps(summaries, indent=2))
    return status


async def run_edit(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = build_pipeline(settings)
    document_id = args.document_id or args.path.stem
    snapshot, _ = await pipeline.add_source(
        document_id,
        ContentSource.text(args.path.read_text(encoding="utf-8"), label=str(args.path)),
        dataset_id=args.dataset_id,
    )
    for index, value in enumerate(args.context or ()):
        try:
            await pipeline.add_source(f"context-{index + 1}", source_from_argument(value), dataset_id=args.dataset_id)
        except IngestionError as exc:
            print(f"Skipping context {value}: {exc}", file=sys.stderr)

    query = RetrievalQuery(
        instruction=args.instruction,
        document_id=document_id,
        dataset_id=args.dataset_id,
        top_k=args.top_k,
    )
    if args.plan:
        pipeline.plans.assign(args.user, args.plan)
    try:
        handle = await pipeline.orchestrator.start(query, snapshot, user_id=args.user, region=args.region)
    except QuotaExceededError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    async for event in handle:
        if args.sse:
            sys.stdout.write(encode_sse(event))
        else:
            sys.stdout.write(json.dumps(event.to_dict()) + "\n")
        sys.stdout.flush()
    state = await handle.wait()
    await pipeline.orchestrator.aclose()

    if state is StreamState.FAILED:
        return 1
    latest = await pipeline.applier.snapshot(document_id)
    if args.write:
        args.path.write_text(latest.text, encoding="utf-8")
    elif args.output:
        args.output.write_text(latest.text, encoding="utf-8")
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ragedit", description="Streaming retrieval-augmented document edits.")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Ingest sources into the vector store")
    ingest.add_argument("sources", nargs="+", help="URLs (prefix rendered+ for JS pages) or file paths")
    ingest.add_argument("--document-id", default=None, help="Document id when ingesting a single source")
    ingest.add_argument("--dataset-id", default=None, help="Optional dataset namespace")

    edit = sub.add_parser("edit", help="Rewrite a text file with a streamed completion")
    edit.add_argument("path", type=Path, help="UTF-8 text file to edit")
    edit.add_argument("--instruction", "-i", required=True, help="Edit instruction for the model")
    edit.add_argument("--region", type=parse_region, default=None, help="Character range START:END to rewrite")
    edit.add_argument("--context", action="append", help="Extra source to retrieve context from (repeatable)")
    edit.add_argument("--document-id", default=None, help="Document id (defaults to the file stem)")
    edit.add_argument("--dataset-id", default=None, help="Optional dataset namespace")
    edit.add_argument("--top-k", type=int, default=None, help="Number of context chunks to retrieve")
    edit.add_argument("--user", default="cli", help="User id the stream counts against")
    edit.add_argument("--plan", default=None, help="Plan tier to assign to the user")
    edit.add_argument("--sse", action="store_true", help="Print events as server-sent-event frames")
    target = edit.add_mutually_exclusive_group()
    target.add_argument("--write", action="store_true", help="Write the edited text back to PATH")
    target.add_argument("--output", type=Path, default=None, help="Write the edited text to this file")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = get_settings()
    configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO))
    runner = run_ingest if args.command == "ingest" else run_edit
    try:
        return asyncio.run(runner(args, settings))
    except RageditError as exc:
        print(f"ragedit: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
