"""Lab case/result/report pipeline CLI.

Usage:
    python -m lab_reporting --input <bundle.json> [options]
    python -m lab_reporting --batch <dir> [options]
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lab_reporting",
        description="Register a lab case, build its result tree and compose the report document",
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--input",
        metavar="PATH",
        help="Path to a JSON bundle (case, catalog, values, print settings)",
    )
    group.add_argument("--batch", metavar="DIR", help="Directory of JSON bundles to process")

    parser.add_argument(
        "--output",
        metavar="PATH",
        default=None,
        help="Write output to file (default: stdout)",
    )
    parser.add_argument(
        "--date",
        metavar="YYYY-MM-DD",
        type=date.fromisoformat,
        default=None,
        help="Date used to compute patient age from date of birth (default: today)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print stage-by-stage reasoning to stderr",
    )
    parser.add_argument(
        "--format",
        choices=["json", "summary"],
        default="json",
        help="Output format: json (document model) or summary (human-readable table)",
    )
    return parser


def format_summary(outcome) -> str:
    """Format a RunOutcome as a human-readable text table."""
    lines = []
    lines.append(f"Lab Report -- {Path(outcome.source).name}")
    lines.append("=" * (len(lines[0])))

    if not outcome.success:
        lines.append(f"FAILED: {outcome.error}")
        return "\n".join(lines)

    case, document = outcome.case, outcome.document
    lines.append(f"Patient: {document.patient.name} ({document.patient.age_sex})")
    lines.append(f"Reg No: {case.reg_no}   DCN: {case.dcn or '-'}")
    lines.append(
        f"Payment: total {case.payment.total:.2f}, balance {case.payment.balance:.2f} ({case.status})"
    )

    col_widths = [28, 10, 10, 16, 6]
    header = f"| {'Test':<{col_widths[0]}} | {'Value':<{col_widths[1]}} | {'Unit':<{col_widths[2]}} | {'Reference':<{col_widths[3]}} | {'Flag':<{col_widths[4]}} |"
    separator = "|" + "|".join("-" * (w + 2) for w in col_widths) + "|"

    for section in document.sections:
        lines.append("")
        lines.append(section.category_name.upper())
        lines.append(header)
        lines.append(separator)
        for block in section.blocks:
            indent = "  " * block.depth
            if block.kind == "param":
                row = (
                    f"| {indent + block.name:<{col_widths[0]}} "
                    f"| {block.value:<{col_widths[1]}} "
                    f"| {block.unit:<{col_widths[2]}} "
                    f"| {block.reference:<{col_widths[3]}} "
                    f"| {(block.flag or '').upper():<{col_widths[4]}} |"
                )
                lines.append(row)
            elif block.kind == "interpretation":
                lines.append(f"  {indent}Interpretation: {block.text}")
            else:
                lines.append(f"| {indent + block.title:<{sum(col_widths) + 12}} |")

    lines.append("")
    issues = [issue for stage in outcome.stages for issue in stage.issues]
    lines.append(
        f"Pipeline: {len(outcome.stages)} stages completed in {outcome.total_time_seconds:.2f}s"
    )
    lines.append(
        f"Abnormal: {document.summary.abnormal_count} of {document.summary.test_count} tests; "
        f"{len(issues)} item issues"
    )
    return "\n".join(lines)


def process_single(bundle_path: Path, args, config, counters):
    """Process a single bundle file and return its RunOutcome."""
    from lab_reporting.pipeline.runner import run_bundle
    from lab_reporting.schemas.pipeline import RunOutcome

    try:
        bundle = json.loads(bundle_path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        return RunOutcome(
            source=str(bundle_path), total_time_seconds=0.0, success=False, error=str(exc)
        )

    outcome = run_bundle(bundle, str(bundle_path), config, counters, on=args.date)

    if args.verbose:
        for stage in outcome.stages:
            print(f"[{stage.stage_name}] {stage.reasoning}", file=sys.stderr)
            for issue in stage.issues:
                print(f"[{stage.stage_name}]   {issue.code}: {issue.message}", file=sys.stderr)

    return outcome


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level, format="%(levelname)s: %(message)s", stream=sys.stderr
    )

    from lab_reporting.pipeline.identifiers import InMemoryCounterStore
    from lab_reporting.schemas.config import ReportingConfig

    config = ReportingConfig()
    # DCN sequences continue across the bundles of one batch
    counters = InMemoryCounterStore()

    if args.input:
        input_path = Path(args.input)
        if not input_path.exists():
            print(f"Error: input file not found: {args.input}", file=sys.stderr)
            return 2
        bundle_files = [input_path]
    else:
        batch_dir = Path(args.batch)
        if not batch_dir.is_dir():
            print(f"Error: batch directory not found: {args.batch}", file=sys.stderr)
            return 2
        bundle_files = sorted(batch_dir.glob("*.json"))
        if not bundle_files:
            print(f"Error: no bundle files found in {args.batch}", file=sys.stderr)
            return 2

    outcomes = [process_single(path, args, config, counters) for path in bundle_files]

    if args.format == "summary":
        output_text = "\n\n".join(format_summary(o) for o in outcomes)
    else:
        if len(outcomes) == 1:
            output_data = outcomes[0].model_dump(by_alias=True, mode="json")
        else:
            output_data = [o.model_dump(by_alias=True, mode="json") for o in outcomes]
        output_text = json.dumps(output_data, indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(output_text)
    else:
        print(output_text)

    if any(not o.success for o in outcomes):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
