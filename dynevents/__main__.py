"""CLI entry point for dynevents."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from .calc import format_currency
from .config import RegistryConfig, load_config
from .registry import EventRegistry
from .schema import EventAction, SchemaError, load_context, load_rules


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Evaluate dynamic financial event rules for one simulation period")
    parser.add_argument("rules", help="Path to rules JSON file")
    parser.add_argument("context", help="Path to simulation context JSON file")
    parser.add_argument("-o", "--output", help="Write evaluated actions as JSON to this path")
    parser.add_argument("--config", help="Path to registry config JSON file")
    parser.add_argument("--validate", action="store_true", help="Validate rules only")
    parser.add_argument("--summary", action="store_true", help="Print text summary to stdout")
    parser.add_argument("--all", action="store_true", help="Evaluate every rule, ignoring offsets and frequency")
    parser.add_argument("--max-actions", type=int, help="Override the per-rule action cap")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _print_validation(errors: list[str], warnings: list[str]) -> None:
    for warning in warnings:
        print(f"WARNING: {warning}")
    for error in errors:
        print(f"ERROR: {error}", file=sys.stderr)


def _format_action(action: EventAction) -> str:
    route = f"{action.source_account or '-'} -> {action.target_account or '-'}"
    return f"  {action.kind.value:<12} {format_currency(action.amount):>12}  {route}  {action.description}"


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        rules = load_rules(args.rules)
        context = load_context(args.context)
        config = load_config(args.config) if args.config else RegistryConfig()
        changes: dict[str, object] = {}
        if args.debug:
            changes["debug_mode"] = True
        if args.max_actions is not None:
            changes["max_actions_per_evaluation"] = args.max_actions
        config = config.with_changes(**changes)
    except (SchemaError, OSError, ValueError) as exc:
        print(f"Failed to load input: {exc}", file=sys.stderr)
        return 2

    registry = EventRegistry(config)
    errors: list[str] = []
    warnings: list[str] = []
    for idx, rule in enumerate(rules):
        result = registry.validate(rule)
        errors.extend(f"rules[{idx}].{msg}" for msg in result.errors)
        warnings.extend(f"rules[{idx}].{msg}" for msg in result.warnings)
    _print_validation(errors, warnings)
    if errors:
        return 1

    if args.validate:
        print("Rules are valid.")
        return 0

    selected = rules if args.all else registry.due_rules(rules, context)
    results = registry.evaluate_many(selected, context)

    if args.summary or not args.output:
        total = 0
        print(f"Month: {context.current_month} (age {context.current_age})")
        print(f"Rules evaluated: {len(selected)} of {len(rules)}")
        for rule_id, actions in results.items():
            print(f"{rule_id}: {len(actions)} action(s)")
            for action in actions:
                print(_format_action(action))
                total += 1
        print(f"Total actions: {total}")

    if args.output:
        payload = {
            "current_month": context.current_month,
            "results": {rule_id: [action.to_dict() for action in actions] for rule_id, actions in results.items()},
        }
        Path(args.output).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote actions to {Path(args.output)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
