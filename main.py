"""Entrypoint: submit section-generation jobs and check on them."""

from __future__ import annotations

import argparse
import json
import logging

from pathlib import Path
import sys

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from scribe_batch.config import EXECUTION_MODES, load_settings
from scribe_batch.errors import ScribeError
from scribe_batch.models import to_jsonable
from scribe_batch.orchestrator import JobOrchestrator
from scribe_batch.prompts import build_section_requests


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch generation of long-form academic sections")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Submit a project outline for generation")
    submit.add_argument("--title", required=True, help="Project title")
    submit.add_argument("--outline", help="Text file with one section title per line")
    submit.add_argument("--section", action="append", default=[], help="Section title (repeatable)")
    submit.add_argument("--citation-style", default="APA")
    submit.add_argument("--project-type", default="academic")
    submit.add_argument("--mode", choices=EXECUTION_MODES, help="Override execution.mode")
    submit.add_argument("--no-figures", action="store_true", help="Ask for no figure placeholders")
    submit.add_argument("--no-tables", action="store_true", help="Ask for no table placeholders")
    submit.add_argument("--wait", action="store_true", help="Wait for the job to complete")

    for name, help_text in (
        ("status", "Show the current status of a job"),
        ("wait", "Poll a job until it completes"),
        ("inspect", "Dump raw upstream status and a results sample"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("job_id")

    estimate = subparsers.add_parser("estimate", help="Estimate processing time for N sections")
    estimate.add_argument("section_count", type=int)
    return parser


def _read_outline(args: argparse.Namespace) -> list[str]:
    titles = list(args.section)
    if args.outline:
        lines = Path(args.outline).read_text(encoding="utf-8").splitlines()
        titles.extend(line.strip() for line in lines if line.strip())
    return titles


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _run(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    config = load_settings(args.settings)
    orchestrator = JobOrchestrator(config)

    if args.command == "estimate":
        _print(to_jsonable(orchestrator.estimate(args.section_count)))
        return

    if args.command == "submit":
        outline = _read_outline(args)
        if not outline:
            parser.error("submit needs --outline or at least one --section")
        requests = build_section_requests(
            outline,
            args.title,
            citation_style=args.citation_style,
            model=orchestrator.model,
            target_words=int(config["generation"]["words_per_section"]),
            include_figures=not args.no_figures,
            include_tables=not args.no_tables,
        )
        submission = orchestrator.submit_job(
            requests, args.title, args.citation_style, args.project_type, mode=args.mode
        )
        _print(to_jsonable(submission))
        if args.wait:
            _print(to_jsonable(orchestrator.wait(submission.job_id)))
        return

    if args.command == "status":
        _print(to_jsonable(orchestrator.get_job_status(args.job_id)))
    elif args.command == "wait":
        _print(to_jsonable(orchestrator.wait(args.job_id)))
    elif args.command == "inspect":
        _print(orchestrator.inspect(args.job_id))


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        _run(args, parser)
    except ScribeError as exc:
        print(f"Error [{exc.kind.value}]: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
