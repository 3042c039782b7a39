"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import yaml

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..intelligence import InvoiceProcessor
from ..invoices import HttpInvoiceLookup, InvoiceLookup, InvoiceLookupError, RegistryInvoiceLookup
from ..memory import MemoryManager
from ..memory_store import MemoryStore
from ..metrics import MetricsCollector
from ..schemas import (
    HumanFeedback,
    Invoice,
    MemoryQuery,
    MemoryType,
    ProcessingResult,
    ResolutionOutcome,
    VendorAction,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="invoice-memory",
        description="Normalize vendor invoices with learned memories and decide when to escalate",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # process command
    process_parser = subparsers.add_parser(
        "process", help="Process one invoice or a JSON list of invoices"
    )
    process_parser.add_argument("file", type=Path, help="Invoice JSON file")
    process_parser.add_argument(
        "--json",
        action="store_true",
        help="Print full processing results as JSON",
    )

    # feedback command
    feedback_parser = subparsers.add_parser("feedback", help="Submit human review feedback")
    feedback_parser.add_argument("file", type=Path, help="Feedback JSON file")

    # memories command
    memories_parser = subparsers.add_parser("memories", help="List stored memories")
    memories_parser.add_argument("--vendor", type=str, help="Only memories of this vendor")
    memories_parser.add_argument(
        "--type",
        type=str,
        choices=[t.value for t in MemoryType],
        help="Only memories of this type",
    )
    memories_parser.add_argument(
        "--all",
        action="store_true",
        help="Include deactivated memories",
    )

    # seed command
    seed_parser = subparsers.add_parser("seed", help="Bootstrap memories from a YAML file")
    seed_parser.add_argument("file", type=Path, help="Seed YAML file")

    # status command
    subparsers.add_parser("status", help="Show memory store statistics")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "path",
        type=Path,
        nargs="?",
        help="Target path (default: the --config path)",
    )

    return parser


def build_manager(config: Config, lookup: InvoiceLookup | None = None) -> MemoryManager:
    """Wire store and manager from configuration."""
    store = MemoryStore(config.memory_db_path, memory_config=config.memory)
    if lookup is None:
        if config.invoice_store.base_url:
            lookup = HttpInvoiceLookup.from_config(config.invoice_store)
        else:
            lookup = RegistryInvoiceLookup(store)
    return MemoryManager(store, config.memory, invoice_lookup=lookup)


def _load_json(path: Path) -> Any:
    with open(path) as f:
        return json.load(f)


def _print_result(invoice: Invoice, result: ProcessingResult) -> None:
    icon = "⚠️ " if result.requires_human_review else "✓"
    print(f"{icon} [{invoice.id}] {invoice.vendor}: {result.decision.value}")
    print(f"   Confidence: {result.confidence_score:.3f}")
    print(f"   Reasoning:  {result.reasoning}")
    for correction in result.proposed_corrections:
        print(
            f"   - {correction.field}: {correction.original_value!r} -> "
            f"{correction.proposed_value!r} ({correction.confidence:.2f})"
        )


def cmd_process(config: Config, file: Path, as_json: bool = False) -> int:
    """Process invoices from a JSON file (single object or list)."""
    try:
        data = _load_json(file)
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Cannot read {file}: {e}")
        return 1

    entries = data if isinstance(data, list) else [data]

    manager = build_manager(config)
    processor = InvoiceProcessor(manager, config.thresholds)
    metrics = MetricsCollector()
    results = []

    for entry in entries:
        vendor = entry.get("vendor") if isinstance(entry, dict) else None
        try:
            invoice = Invoice.from_dict(entry)
            started = time.perf_counter()
            result = processor.process_invoice(invoice)
            duration_ms = (time.perf_counter() - started) * 1000
        except Exception as e:
            logger.error(f"Failed to process invoice {vendor or '?'}: {e}", exc_info=True)
            metrics.record_error(vendor, e)
            print(f"❌ Failed to process invoice ({vendor or 'unknown vendor'}): {e}")
            continue

        metrics.record_result(invoice.vendor, result, duration_ms)
        manager.store.register_invoice(
            invoice.id,
            invoice.vendor,
            decision=result.decision.value,
            confidence=result.confidence_score,
            requires_review=result.requires_human_review,
        )

        if as_json:
            results.append(result.to_dict())
        else:
            _print_result(invoice, result)

    summary = metrics.summary()
    if as_json:
        output = results[0] if not isinstance(data, list) and results else results
        print(json.dumps(output, indent=2))
    else:
        print(
            f"\n📊 {summary.total_processed} processed: "
            f"{summary.auto_accepted} auto-accepted, {summary.auto_corrected} auto-corrected, "
            f"{summary.escalated} escalated, {summary.errors} failed"
        )

    return 1 if summary.errors else 0


def cmd_feedback(config: Config, file: Path) -> int:
    """Submit human review feedback."""
    try:
        feedback = HumanFeedback.from_dict(_load_json(file))
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
        print(f"❌ Invalid feedback file {file}: {e}")
        return 1

    manager = build_manager(config)
    try:
        updates = manager.process_human_feedback(feedback)
    except InvoiceLookupError as e:
        logger.warning(f"Vendor lookup failed for invoice {feedback.invoice_id}: {e}")
        print(f"❌ Cannot resolve vendor of invoice {feedback.invoice_id}: {e}")
        return 1

    print(f"✓ Learned from feedback for invoice {feedback.invoice_id}")
    for update in updates:
        print(f"   - {update.kind.value}: {update.details}")
    return 0


def cmd_memories(
    config: Config,
    vendor: str | None = None,
    memory_type: str | None = None,
    include_inactive: bool = False,
) -> int:
    """List memories."""
    store = MemoryStore(config.memory_db_path, memory_config=config.memory)
    memories = store.query(
        MemoryQuery(
            vendor=vendor,
            type=MemoryType(memory_type) if memory_type else None,
            active_only=not include_inactive,
        )
    )

    if not memories:
        print("No memories found")
        return 0

    for memory in memories:
        state = "" if memory.is_active else " (inactive)"
        print(
            f"  [{memory.type.value:<10}] {memory.vendor}: {memory.describe()} "
            f"conf={memory.confidence:.2f} used={memory.usage_count}{state}"
        )
    print(f"\n{len(memories)} memorie(s)")
    return 0


def seed_memories(manager: MemoryManager, entries: list[dict]) -> int:
    """Create memories from seed entries. Returns the number created."""
    created = 0
    for entry in entries:
        memory_type = MemoryType(entry["type"])
        confidence = entry.get("confidence")

        if memory_type is MemoryType.VENDOR:
            manager.create_vendor_memory(
                entry["vendor"],
                entry["trigger_signal"],
                VendorAction.from_dict(entry["action"]),
                entry.get("pattern", ""),
                confidence,
            )
        elif memory_type is MemoryType.CORRECTION:
            manager.create_correction_memory(
                entry["vendor"],
                entry["field_name"],
                entry.get("original_pattern", "human_correction"),
                entry.get("corrected_value"),
                entry.get("correction_reason", "Seeded correction"),
                confidence,
            )
        else:
            manager.create_resolution_memory(
                entry["vendor"],
                entry["scenario"],
                ResolutionOutcome(entry["outcome"]),
                entry.get("system_action", ""),
                entry.get("human_feedback"),
                confidence,
            )
        created += 1
    return created


def cmd_seed(config: Config, file: Path) -> int:
    """Bootstrap memories from YAML."""
    try:
        with open(file) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"❌ Cannot read {file}: {e}")
        return 1

    entries = data.get("memories", []) if isinstance(data, dict) else data
    manager = build_manager(config)
    try:
        created = seed_memories(manager, entries)
    except (KeyError, ValueError) as e:
        print(f"❌ Invalid seed entry: {e}")
        return 1

    print(f"✓ Seeded {created} memorie(s)")
    return 0


def cmd_status(config: Config) -> int:
    """Show memory store status."""
    store = MemoryStore(config.memory_db_path, memory_config=config.memory)
    stats = store.get_stats()

    print("\n📊 Memory Status")
    print("=" * 40)
    print(f"  Memories total:         {stats['memories_total']}")
    print(f"  Active:                 {stats['memories_active']}")
    print(f"    vendor:               {stats['vendor_memories']}")
    print(f"    correction:           {stats['correction_memories']}")
    print(f"    resolution:           {stats['resolution_memories']}")
    print(f"  Inactive:               {stats['memories_inactive']}")
    print(f"  Decayed memories:       {stats['decayed_memories']}")
    print(f"  Average confidence:     {stats['average_confidence']:.3f}")
    print(f"  Invoices registered:    {stats['invoices_registered']}")
    print()

    return 0


def cmd_init_config(path: Path) -> int:
    """Write the default configuration file."""
    if path.exists():
        print(f"❌ {path} already exists")
        return 1
    create_default_config(path)
    print(f"✓ Wrote default configuration to {path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.path or parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "process":
        return cmd_process(config, parsed.file, parsed.json)
    elif parsed.command == "feedback":
        return cmd_feedback(config, parsed.file)
    elif parsed.command == "memories":
        return cmd_memories(config, parsed.vendor, parsed.type, parsed.all)
    elif parsed.command == "seed":
        return cmd_seed(config, parsed.file)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
