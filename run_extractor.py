#!/usr/bin/env python3
"""
CLI script to run the full pipeline over HTML files.

Each file is classified, sent to the LLM for field extraction and validated.
With --report, a business-weighted validation report over all files is
printed after the per-file results.

Usage:
    python run_extractor.py page.html --url https://www.amazon.com/dp/B000
    python run_extractor.py pages/*.html --site-type allrecipes -o results.json
    python run_extractor.py page.html --provider openai --report
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Load .env file automatically (GEMINI_API_KEY, LLM_PROVIDER, ...)
from dotenv import load_dotenv
load_dotenv()

from site_extractor.main import SitePipeline
from site_extractor.schemas import ExtractorConfig
from site_extractor.extraction_cache import ExtractionCache
from site_extractor.exceptions import SiteExtractorError
from site_extractor.logger import setup_logger


async def run(args) -> list[dict]:
    config = ExtractorConfig.from_env(model=args.model, max_retries=args.max_retries)
    cache = None if args.no_cache else ExtractionCache(args.cache_dir)

    results = []
    pipeline_results = []

    async with SitePipeline(config=config, provider=args.provider,
                            rules_path=args.rules, cache=cache) as pipeline:
        for file_path in args.files:
            file_path = Path(file_path)
            print(f"Extracting: {file_path.name}", file=sys.stderr)

            try:
                result = await pipeline.process_file(file_path, url=args.url, site_type=args.site_type)
            except OSError as e:
                results.append({"file": str(file_path), "status": "error", "error": str(e)})
                print(f"  ✗ Error: {e}", file=sys.stderr)
                continue

            pipeline_results.append(result)
            entry = {"file": str(file_path), **result.model_dump(mode="json")}
            if result.extraction.success:
                entry["status"] = "success"
                v = result.validation
                print(
                    f"  ✓ {result.classification.label.value} | {len(result.extraction.data)} fields | "
                    f"validated {v.metrics.validated_accuracy}% ({len(v.penalties)} penalties)",
                    file=sys.stderr
                )
            else:
                entry["status"] = "error"
                print(f"  ✗ {result.extraction.error_type.value}: {result.extraction.error}", file=sys.stderr)
            results.append(entry)

    if args.report:
        results.append({"report": pipeline.report(pipeline_results, args.previous_accuracy)})
    return results


def main():
    parser = argparse.ArgumentParser(
        description="Extract and validate structured fields from HTML files"
    )
    parser.add_argument("files", nargs="+", help="HTML files to process")
    parser.add_argument("--url", "-u", help="Page URL (site type is detected from it)")
    parser.add_argument("--site-type", "-s", help="Override site type (amazon, allrecipes, ...)")
    parser.add_argument("--provider", "-p", help="LLM provider: gemini, openai or anthropic")
    parser.add_argument("--model", "-m", help="Model name (defaults to GEMINI_MODEL or gemini-1.5-flash)")
    parser.add_argument("--max-retries", type=int, help="Attempts per page (default: 3)")
    parser.add_argument("--rules", "-r", help="JSON file with validation rule overrides")
    parser.add_argument("--cache-dir", help="Extraction cache directory (default: ./extraction_cache)")
    parser.add_argument("--no-cache", action="store_true", help="Disable caching entirely")
    parser.add_argument("--report", action="store_true", help="Append a validation report")
    parser.add_argument("--previous-accuracy", type=float, default=0.0,
                        help="Validated accuracy of the previous run, for the trajectory in the report")
    parser.add_argument("--output", "-o", help="Output JSON file (default: print to stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        results = asyncio.run(run(args))
    except SiteExtractorError as e:
        print(f"✗ {e.message}", file=sys.stderr)
        sys.exit(1)

    # ensure_ascii=False preserves unicode characters in the JSON
    output = json.dumps(results, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"\nSaved to: {args.output}", file=sys.stderr)
    else:
        print(output)


if __name__ == "__main__":
    main()
