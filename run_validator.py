#!/usr/bin/env python3
"""
CLI script to validate already-extracted records (no LLM call).

Input files hold either one record object, or a list of entries shaped like
{"site_type": "amazon", "site": "optional name", "data": {...}}.

Usage:
    python run_validator.py record.json --site-type amazon
    python run_validator.py batch.json --rules strict_rules.json --report
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from site_extractor.validator import Validator
from site_extractor.rules import load_validation_config
from site_extractor.reporting import generate_validation_report
from site_extractor.exceptions import ConfigError
from site_extractor.logger import setup_logger


def load_entries(path: Path, default_site_type: str) -> list[dict]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = [{"data": payload}]
    entries = []
    for item in payload:
        if isinstance(item, dict) and "data" in item:
            entries.append({
                "site_type": item.get("site_type") or default_site_type,
                "site": item.get("site") or path.name,
                "data": item["data"],
            })
        else:
            entries.append({"site_type": default_site_type, "site": path.name, "data": item})
    return entries


def main():
    parser = argparse.ArgumentParser(description="Validate extracted records and score penalties")
    parser.add_argument("files", nargs="+", help="JSON files with extracted records")
    parser.add_argument("--site-type", "-s", default="generic", help="Site type for entries without one")
    parser.add_argument("--rules", "-r", help="JSON file with validation rule overrides")
    parser.add_argument("--report", action="store_true", help="Append a validation report")
    parser.add_argument("--previous-accuracy", type=float, default=0.0,
                        help="Validated accuracy of the previous run, for the trajectory in the report")
    parser.add_argument("--output", "-o", help="Output JSON file (default: print to stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        validator = Validator(load_validation_config(args.rules))
    except ConfigError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        sys.exit(1)

    results = []
    validations = []
    names = []

    for file_path in args.files:
        file_path = Path(file_path)
        print(f"Validating: {file_path.name}", file=sys.stderr)

        try:
            entries = load_entries(file_path, args.site_type)
        except (OSError, json.JSONDecodeError, TypeError) as e:
            results.append({"file": str(file_path), "status": "error", "error": str(e)})
            print(f"  ✗ Error: {e}", file=sys.stderr)
            continue

        for entry in entries:
            result = validator.apply_validation_penalties(entry["data"], entry["site_type"])
            validations.append(result)
            names.append(entry["site"])
            results.append({"file": str(file_path), "site": entry["site"],
                            "status": "success", **result.model_dump(mode="json")})
            print(
                f"  {'✓' if result.success else '✗'} {entry['site']}: "
                f"raw {result.raw_accuracy}% → validated {result.validated_accuracy}% "
                f"({len(result.penalties)} penalties)",
                file=sys.stderr
            )

    if args.report:
        results.append({"report": generate_validation_report(
            validations,
            site_names=names,
            custom_weights=validator.config.business_weights,
            previous_accuracy=args.previous_accuracy,
        )})

    output = json.dumps(results, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"\nSaved to: {args.output}", file=sys.stderr)
    else:
        print(output)


if __name__ == "__main__":
    main()
