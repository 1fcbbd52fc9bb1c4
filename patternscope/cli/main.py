"""
PatternScope CLI — Read-Only Interface over HTML files.

Commands:
    patternscope detect <html> --pattern P [--guarantee G]
    patternscope explain <html> --pattern P [--index N]
    patternscope diff <before.html> <after.html>
    patternscope signatures <html>
    patternscope similar <html> <selector-a> <selector-b>

This CLI is READ-ONLY. It cannot:
    - Change weights or thresholds
    - Hide rejected candidates' reasons
    - Modify the input documents
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from ..detection.aggregator import SignatureListing, generate_explanation
from ..domain import DetectionResult, GuaranteeLevel, PatternName
from ..environment import EnvironmentAccessError
from ..scanning.diff_patterns import DiffMatch
from .pipeline import run_detection, run_diff, run_signatures, run_similarity


INPUT_ERRORS = (OSError, LookupError, EnvironmentAccessError)


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

def format_guarantee_badge(guarantee: GuaranteeLevel) -> str:
    badges = {
        GuaranteeLevel.STRUCTURAL: "[STRUCT]",
        GuaranteeLevel.SEMANTIC: "[SEMANT]",
        GuaranteeLevel.BEHAVIORAL: "[BEHAV ]",
        GuaranteeLevel.VERIFIED: "[VERIFY]",
    }
    return badges.get(guarantee, "[??????]")


def format_result_row(index: int, result: DetectionResult) -> str:
    badge = format_guarantee_badge(result.guarantee)
    e = result.evidence
    return (
        f"{index:>2}. {badge} {result.confidence:.2f} | {result.path or '<root>'} | "
        f"S={e.structural:.2f} P={e.phrasal:.2f} M={e.semantic:.0f} B={e.behavioral:.2f}"
    )


def format_diff_match(match: DiffMatch) -> str:
    state = f" [{match.state}]" if match.state else ""
    return f"  • {match.pattern.value} ({match.confidence:.0%}){state} — {match.proof}"


def format_signature_row(listing: SignatureListing) -> str:
    return f"{listing.fingerprint} | {listing.tag:<8} | {listing.path} | {' '.join(listing.features)}"


# =============================================================================
# CLI COMMANDS
# =============================================================================

def _parse_pattern(value: str) -> Optional[PatternName]:
    pattern = PatternName.parse(value)
    if pattern is None:
        print(f"Unknown pattern: {value}")
        print("Known patterns: " + ", ".join(p.value for p in PatternName))
    return pattern


def cmd_detect(args: argparse.Namespace) -> int:
    """Classify a document for one pattern."""
    pattern = _parse_pattern(args.pattern)
    if pattern is None:
        return 1
    guarantee = GuaranteeLevel.parse(args.guarantee)
    if guarantee is None:
        print(f"Unknown guarantee level: {args.guarantee}")
        return 1

    try:
        run = run_detection(args.html, pattern, guarantee)
    except INPUT_ERRORS as e:
        print("ERROR: Detection failed")
        print(f"Reason: {e}")
        return 1

    print(f"PatternScope — {pattern.value} at {guarantee.value}")
    print("=" * 70)
    print()

    if not run.results:
        print(f"No {pattern.value} found.")
        return 0

    for index, result in enumerate(run.results):
        print(format_result_row(index, result))

    print()
    print(f"Total: {len(run.results)} detection(s)")
    print()
    print("Use 'patternscope explain' for a signal-by-signal breakdown.")
    return 0


def cmd_explain(args: argparse.Namespace) -> int:
    """Explain one detection."""
    pattern = _parse_pattern(args.pattern)
    if pattern is None:
        return 1

    try:
        run = run_detection(args.html, pattern, GuaranteeLevel.STRUCTURAL)
    except INPUT_ERRORS as e:
        print("ERROR: Detection failed")
        print(f"Reason: {e}")
        return 1

    result = run.get_result(args.index)
    if result is None:
        print(f"No {pattern.value} detection at index {args.index}")
        print()
        print("Available detections:")
        for index, r in enumerate(run.results):
            print(f"  {index} — {r.path or '<root>'} ({r.confidence:.2f})")
        return 1

    print("PatternScope — Detection Explanation")
    print("=" * 50)
    print()
    print(generate_explanation(result))
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    """Diff two captures and run the zero-config matchers."""
    try:
        run = run_diff(args.before, args.after)
    except INPUT_ERRORS as e:
        print("ERROR: Diff failed")
        print(f"Reason: {e}")
        return 1

    summary = run.diff.summary
    print("PatternScope — Snapshot Diff")
    print("=" * 50)
    print()
    print("STATISTICS:")
    print(f"  Changed:   {summary.changed}")
    print(f"  Added:     {summary.added}")
    print(f"  Removed:   {summary.removed}")
    print(f"  Increased: {summary.increased}")
    print(f"  Decreased: {summary.decreased}")
    print()

    if run.diff.changed:
        print("CHANGES:")
        for entry in run.diff.changed:
            kinds = ", ".join(sorted({c.change_type.value for c in entry.changes}))
            print(f"  • {entry.path}: {kinds}")
        print()

    if run.matches:
        print("PATTERNS:")
        for match in run.matches:
            print(format_diff_match(match))
    else:
        print("No pattern recognised from the changes.")
    return 0


def cmd_signatures(args: argparse.Namespace) -> int:
    """List landmark structural signatures."""
    try:
        listings = run_signatures(args.html)
    except INPUT_ERRORS as e:
        print("ERROR: Signature listing failed")
        print(f"Reason: {e}")
        return 1

    for listing in listings:
        print(format_signature_row(listing))
    print()
    print(f"Total: {len(listings)} signature(s)")
    return 0


def cmd_similar(args: argparse.Namespace) -> int:
    """Compare the structure of two nodes."""
    try:
        run = run_similarity(args.html, args.selector_a, args.selector_b)
    except INPUT_ERRORS as e:
        print("ERROR: Comparison failed")
        print(f"Reason: {e}")
        return 1

    print(f"{run.selector_a}: {run.signature_a.fingerprint[:16]}")
    print(f"{run.selector_b}: {run.signature_b.fingerprint[:16]}")
    print(f"Similarity: {run.similarity:.3f}")
    return 0


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="patternscope",
        description="PatternScope — Explainable UI Pattern Classification",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log engine activity to stderr",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
    )

    # Detect command
    detect_parser = subparsers.add_parser(
        "detect",
        help="Classify a document for one pattern",
    )
    detect_parser.add_argument("html", help="HTML file to scan")
    detect_parser.add_argument("--pattern", "-p", required=True, help="Pattern name")
    detect_parser.add_argument(
        "--guarantee", "-g",
        default=GuaranteeLevel.BEHAVIORAL.value,
        help="Minimum guarantee level (default: BEHAVIORAL)",
    )
    detect_parser.set_defaults(func=cmd_detect)

    # Explain command
    explain_parser = subparsers.add_parser(
        "explain",
        help="Explain a detection signal by signal",
    )
    explain_parser.add_argument("html", help="HTML file to scan")
    explain_parser.add_argument("--pattern", "-p", required=True, help="Pattern name")
    explain_parser.add_argument(
        "--index", "-i",
        type=int,
        default=0,
        help="Which detection to explain, best first (default: 0)",
    )
    explain_parser.set_defaults(func=cmd_explain)

    # Diff command
    diff_parser = subparsers.add_parser(
        "diff",
        help="Diff two captures of a page",
    )
    diff_parser.add_argument("before", help="HTML before the action")
    diff_parser.add_argument("after", help="HTML after the action")
    diff_parser.set_defaults(func=cmd_diff)

    # Signatures command
    signatures_parser = subparsers.add_parser(
        "signatures",
        help="List structural signatures of landmark nodes",
    )
    signatures_parser.add_argument("html", help="HTML file to scan")
    signatures_parser.set_defaults(func=cmd_signatures)

    # Similar command
    similar_parser = subparsers.add_parser(
        "similar",
        help="Structural similarity of two nodes",
    )
    similar_parser.add_argument("html", help="HTML file to scan")
    similar_parser.add_argument("selector_a", help="CSS selector of the first node")
    similar_parser.add_argument("selector_b", help="CSS selector of the second node")
    similar_parser.set_defaults(func=cmd_similar)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
