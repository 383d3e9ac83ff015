#!/usr/bin/env python3
"""CLI for the product listing pipeline.

Usage:
    python catalog_cli.py add --front shirt_front.jpg --back shirt_back.jpg \\
        --gender female --age 28 --fit oversize --background white --wait
    python catalog_cli.py list
    python catalog_cli.py retry 3f2a9c1d0b7e
    python catalog_cli.py serve-worker
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

import costs
import log_setup
from app import build_pipeline
from config import Settings
from errors import ProductNotFound, RetryNotAllowed
from image_utils import file_to_data_url, save_data_url
from models import STAGES, ProductRecord
from pipeline import PipelineOrchestrator

_STATUS_ICON = {
    "pending":   "◌",
    "updating":  "…",
    "completed": "✓",
    "failed":    "✗",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Turn garment photos into a finished product listing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Queue a new product")
    add.add_argument("--front", required=True, help="Front photo of the garment")
    add.add_argument("--back", default=None, help="Back photo of the garment (optional)")
    add.add_argument("--gender", default="female")
    add.add_argument("--age", default="25")
    add.add_argument("--body-type", default="average")
    add.add_argument("--fit", default="regular")
    add.add_argument("--background", default="white")
    add.add_argument("--accessory", default="")
    add.add_argument("--description", default="", help="Free-text details the copy must mention")
    add.add_argument("--language", choices=["en", "tr"], default="en")
    add.add_argument("--wait", action="store_true", help="Run the pipeline until the product is done")
    add.add_argument("--output-dir", default="cli_output",
                     help="Where --wait saves the generated images (default: cli_output)")

    sub.add_parser("list", help="List products and their stage status")

    show = sub.add_parser("show", help="Show one product")
    show.add_argument("product_id")
    show.add_argument("--json", action="store_true", help="Print the record (without images) as JSON")

    retry = sub.add_parser("retry", help="Re-queue an exited product")
    retry.add_argument("product_id")
    retry.add_argument("--wait", action="store_true")

    delete = sub.add_parser("delete", help="Delete a product")
    delete.add_argument("product_id")

    logs = sub.add_parser("logs", help="Show failure notifications")
    logs.add_argument("--clear", action="store_true", help="Delete all notifications")

    sub.add_parser("metrics", help="Show model usage and estimated cost")
    sub.add_parser("serve-worker", help="Run the polling loop in the foreground")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    load_dotenv()
    log_setup.configure()
    settings = Settings.from_env()
    pipeline = build_pipeline(settings)

    try:
        if args.command == "add":
            return _cmd_add(pipeline, settings, args)
        if args.command == "list":
            return _cmd_list(pipeline)
        if args.command == "show":
            return _cmd_show(pipeline, args.product_id, args.json)
        if args.command == "retry":
            pipeline.retry(args.product_id)
            _echo(f"  ✓ {args.product_id} re-queued")
            if args.wait:
                return _wait(pipeline, args.product_id, Path("cli_output"))
            return 0
        if args.command == "delete":
            if not pipeline.cancel(args.product_id):
                raise ProductNotFound(args.product_id)
            _echo(f"  ✓ {args.product_id} deleted")
            return 0
        if args.command == "logs":
            return _cmd_logs(pipeline, args.clear)
        if args.command == "metrics":
            return _cmd_metrics(pipeline)
        if args.command == "serve-worker":
            return _cmd_serve(pipeline, settings)
    except ProductNotFound as exc:
        print(f"✗  product {exc.args[0]} not found", file=sys.stderr)
        return 1
    except RetryNotAllowed as exc:
        print(f"✗  {exc}", file=sys.stderr)
        return 1
    return 2


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _check_keys(settings: Settings) -> bool:
    missing = settings.missing_keys()
    for name in missing:
        print(f"✗  {name} not set", file=sys.stderr)
    return not missing


def _cmd_add(pipeline: PipelineOrchestrator, settings: Settings, args) -> int:
    if args.wait and not _check_keys(settings):
        return 2

    record = pipeline.create_product(
        file_to_data_url(args.front),
        file_to_data_url(args.back) if args.back else "",
        gender=args.gender,
        age=args.age,
        body_type=args.body_type,
        fit=args.fit,
        background=args.background,
        accessory=args.accessory,
        description=args.description,
        language=args.language,
    )
    _echo(f"\n  ✦ Product queued: {record.id}")
    _echo(f"  Front : {args.front}")
    _echo(f"  Back  : {args.back or '—'}\n")

    if args.wait:
        return _wait(pipeline, record.id, Path(args.output_dir))
    return 0


def _wait(pipeline: PipelineOrchestrator, product_id: str, output_dir: Path) -> int:
    """Drive ticks in this process until the product reaches a terminal state."""
    last_line = ""
    while True:
        asyncio.run(pipeline.tick())
        record = pipeline.store.products.get(product_id)
        if record is None:
            _echo("  ✗ product was deleted")
            return 1
        line = _stage_line(record)
        if line != last_line:
            _echo(f"  {line}  {record.error_log or ''}")
            last_line = line
        elif not record.is_terminal:
            time.sleep(1.0)  # another worker owns the current stage
        if record.is_terminal:
            break

    if record.overall_status.value != "finished":
        _echo(f"\n  ✗ {record.error_log}\n")
        return 1

    out = output_dir / record.id
    saved = []
    for name, image in (("front", record.model_front), ("back", record.model_back)):
        if image:
            saved.append(save_data_url(image, out / f"model_{name}.png"))

    _echo("\n  ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    _echo(f"  Title   : {record.product_title}")
    _echo(f"  Tags    : {' '.join(record.tags)}")
    _echo(f"  Images  : {', '.join(str(p) for p in saved) or '—'}\n")
    return 0


def _cmd_list(pipeline: PipelineOrchestrator) -> int:
    records = pipeline.store.products.list()
    if not records:
        _echo("  (no products)")
        return 0
    for r in records:
        created = datetime.fromtimestamp(r.created_at).strftime("%Y-%m-%d %H:%M")
        retry_hint = "  [retry available]" if pipeline.can_retry(r) else ""
        _echo(f"  {r.id}  {created}  {r.overall_status.value:<8}  {_stage_line(r)}"
              f"  {r.product_title or ''}{retry_hint}")
    return 0


def _cmd_show(pipeline: PipelineOrchestrator, product_id: str, as_json: bool) -> int:
    record = pipeline.get_product(product_id)
    if as_json:
        print(json.dumps(record.summary(), indent=2))
        return 0
    _echo(f"\n  {record.id}  ({record.overall_status.value}, retries {record.retry_count})")
    _echo(f"  {_stage_line(record)}")
    _echo(f"  Status  : {record.error_log or ''}")
    _echo(f"  Title   : {record.product_title or '—'}")
    _echo(f"  Desc    : {record.product_desc or '—'}")
    _echo(f"  Front   : {record.front_analyse or '—'}\n")
    return 0


def _cmd_logs(pipeline: PipelineOrchestrator, clear: bool) -> int:
    if clear:
        pipeline.sink.clear()
        _echo("  ✓ notifications cleared")
        return 0
    for entry in pipeline.sink.list():
        ts = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        _echo(f"  {ts}  {entry.product_id or '-':<12}  {entry.message}")
    return 0


def _cmd_metrics(pipeline: PipelineOrchestrator) -> int:
    summary = costs.metrics_summary(pipeline.store)
    for m in summary["models"]:
        _echo(f"  {m['model_id']:<32} {m['total_requests']:>6} req   ~${m['total_cost']:.4f}")
    _echo(f"  {'Total':<32} {summary['total_requests']:>6} req   ~${summary['total_cost']:.4f}")
    return 0


def _cmd_serve(pipeline: PipelineOrchestrator, settings: Settings) -> int:
    if not _check_keys(settings):
        return 2
    _echo(f"\n  ✦ Pipeline worker — tick every {settings.interval:.0f}s (Ctrl+C to stop)\n")
    try:
        asyncio.run(pipeline.run_forever())
    except KeyboardInterrupt:
        _echo("\n  stopped")
    return 0


def _stage_line(record: ProductRecord) -> str:
    return "  ".join(
        f"{_STATUS_ICON[record.stage_status(s).value]} {s}" for s in STAGES
    )


def _echo(msg: str) -> None:
    print(msg, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
