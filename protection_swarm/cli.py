"""Command-line interface for the protection swarm."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from .config import AppConfig, load_config
from .logging_setup import configure_logging
from .notifications import build_notifiers
from .security import analyze_transaction_risk, classify_event
from .storage import InMemoryRepository, load_positions_file
from .swarm import Swarm

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="protection-swarm",
        description="Automated incident response for collateralized DeFi positions",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    status_parser = sub.add_parser("status", help="Start the swarm and print agent health")
    status_parser.add_argument("--positions", default=None, help="Positions YAML file")

    ingest_parser = sub.add_parser("ingest", help="Run risk event(s) through the pipeline")
    ingest_parser.add_argument(
        "event_file", help="YAML/JSON file holding one event or a list of events"
    )
    ingest_parser.add_argument("--positions", default=None, help="Positions YAML file")

    scan_parser = sub.add_parser("scan", help="Scan positions for netting opportunities")
    scan_parser.add_argument("--positions", required=True, help="Positions YAML file")

    classify_parser = sub.add_parser("classify", help="Score a transaction for attack patterns")
    classify_parser.add_argument(
        "tx_file", help="YAML/JSON file with 'transaction' and optional 'window'"
    )

    watch_parser = sub.add_parser("watch", help="Continuous agent health supervision")
    watch_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Health check interval in seconds (overrides config)",
    )
    watch_parser.add_argument("--positions", default=None, help="Positions YAML file")

    return parser


def _read_document(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path) as f:
        return yaml.safe_load(f)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _repository(positions: str | None) -> InMemoryRepository:
    return load_positions_file(positions) if positions else InMemoryRepository()


def _swarm(config: AppConfig, positions: str | None) -> Swarm:
    return Swarm(
        config,
        _repository(positions),
        notifiers=build_notifiers(config.notifications),
    )


async def _status(config: AppConfig, args: argparse.Namespace) -> int:
    async with _swarm(config, args.positions) as swarm:
        _print_json(await swarm.status())
    return 0


async def _ingest(config: AppConfig, args: argparse.Namespace) -> int:
    document = _read_document(args.event_file)
    async with _swarm(config, args.positions) as swarm:
        if isinstance(document, list):
            result = await swarm.process_risk_batch(document)
        else:
            result = await swarm.process_risk_event(document or {})
        _print_json(result.to_dict())
    return 0 if result.success else 1


async def _scan(config: AppConfig, args: argparse.Namespace) -> int:
    async with _swarm(config, args.positions) as swarm:
        opportunities = await swarm.scan_netting_opportunities()
        _print_json([asdict(o) for o in opportunities])
    return 0


def _classify(args: argparse.Namespace) -> int:
    document = _read_document(args.tx_file) or {}
    tx = document.get("transaction", {})
    window = document.get("window")

    assessment = analyze_transaction_risk(tx, window)
    payload: dict[str, Any] = {
        "tx_hash": assessment.tx_hash,
        "overall_risk_level": assessment.overall_risk_level.value,
        "max_confidence": assessment.max_confidence,
        "flash_loan": assessment.flash_loan.to_dict(),
        "sandwich": assessment.sandwich.to_dict(),
        "recommendations": list(assessment.recommendations),
    }
    if document.get("position_id"):
        payload["risk_event"] = classify_event(
            tx,
            document["position_id"],
            window,
            float(document.get("position_value_usd", 0.0)),
        )
    _print_json(payload)
    return 0


async def _watch(config: AppConfig, args: argparse.Namespace) -> int:
    async with _swarm(config, args.positions) as swarm:
        await swarm.run_health_checks(args.interval)
    return 0


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command."""
    configure_logging(args.log_level)

    if args.command == "classify":
        return _classify(args)

    config = load_config(args.config)
    if args.command == "status":
        return await _status(config, args)
    if args.command == "ingest":
        return await _ingest(config, args)
    if args.command == "scan":
        return await _scan(config, args)
    if args.command == "watch":
        return await _watch(config, args)

    build_parser().print_help()
    return 1


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)
