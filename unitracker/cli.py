"""
CLI (Command Line Interface).

Quick terminal commands on top of the handbook snapshot, e.g.:

    unitracker search <text>
    unitracker show <code>
    unitracker meta
    unitracker serve

Note:
- The crawler itself lives in unitracker/scrape.py (unitracker-scrape)
- This CLI prints plain text (no rich formatting)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

from unitracker.config import DEFAULT_OUTPUT, ApiSettings
from unitracker.storage import find_item, load_snapshot, snapshot_meta


MAX_RESULTS = 20


def _default_data_path() -> Path:
    return Path(os.environ.get("HANDBOOK_DATA_PATH") or DEFAULT_OUTPUT)


def _load_payload(path: Path) -> dict[str, Any]:
    """
    Load the snapshot.

    CLI behavior: never crash if data is missing or broken.
    Instead, return an empty snapshot so commands can still run.
    """
    try:
        return load_snapshot(path)
    except (OSError, ValueError, UnicodeDecodeError):
        return {"items": []}


def _cmd_search(args: argparse.Namespace, payload: dict[str, Any]) -> int:
    """
    Search subjects by substring match in code, name, or instructor emails.
    """
    query = (args.text or "").strip().lower()
    if not query:
        print("Please provide a search text.")
        return 1

    matches: list[tuple[str, str]] = []
    for item in payload.get("items") or []:
        code = str(item.get("code", "")).strip().upper()
        name = str(item.get("name", "") or "").strip()
        emails = item.get("instructorEmails") or []
        hay = f"{code} {name} {' '.join(str(x) for x in emails)}".lower()
        if query in hay:
            matches.append((code, name if name else "(no name)"))

    if not matches:
        print("No results.")
        return 0

    for code, name in matches[:MAX_RESULTS]:
        print(f"{code} | {name}")
    if len(matches) > MAX_RESULTS:
        print(f"... and {len(matches) - MAX_RESULTS} more results")
    return 0


def _print_table(table: dict[str, Any]) -> None:
    columns = [str(c) for c in table.get("columns") or []]
    if columns:
        print("    " + " | ".join(columns))
    for row in table.get("rows") or []:
        cells = [str(row.get(c, "")) for c in columns] if columns else [str(v) for v in row.values()]
        print("    " + " | ".join(cells))


def _cmd_show(args: argparse.Namespace, payload: dict[str, Any]) -> int:
    """
    Print one subject record.
    """
    code = (args.code or "").strip().upper()
    if not code:
        print("Please provide a subject code.")
        return 1

    item = find_item(payload, code)
    if item is None:
        print(f"Not found: {code}")
        return 1

    points = item.get("creditPoints")
    print(f"{item.get('code')} | {item.get('name')}")
    print(f"Credit points: {points if points is not None else '-'}")
    print(f"Study period: {item.get('studyPeriod', '')} {item.get('year', '')}".rstrip())
    if item.get("availability"):
        print(f"Availability: {item['availability']}")
    emails = item.get("instructorEmails") or []
    print(f"Instructors: {', '.join(emails) if emails else '-'}")

    for paragraph in item.get("overview") or []:
        print()
        print(paragraph)

    tables = (item.get("assessment") or {}).get("tables") or []
    for i, table in enumerate(tables, start=1):
        print()
        print(f"Assessment table {i}:")
        _print_table(table)

    source = item.get("source") or {}
    if source.get("subjectUrl"):
        print()
        print(f"Source: {source['subjectUrl']}")
    return 0


def _cmd_meta(args: argparse.Namespace, payload: dict[str, Any]) -> int:
    meta = snapshot_meta(payload)
    print(f"Version:   {meta['version'] or '-'}")
    print(f"Generated: {meta['generatedAt'] or '-'}")
    print(f"Subjects:  {meta['count']}")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from unitracker.api import serve

    settings = ApiSettings.from_env()
    settings = ApiSettings(
        data_path=args.data,
        refresh_token=settings.refresh_token,
        host=args.host or settings.host,
        port=args.port or settings.port,
    )
    serve(settings)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="unitracker", description="UniTracker handbook CLI")
    parser.add_argument("--data", type=Path, default=None, help="Snapshot JSON path")
    sub = parser.add_subparsers(dest="command", required=True)

    p_search = sub.add_parser("search", help="Search for subjects")
    p_search.add_argument("text", type=str, help="Search text")

    p_show = sub.add_parser("show", help="Show one subject by code")
    p_show.add_argument("code", type=str, help="Subject code (e.g. MAST10006)")

    sub.add_parser("meta", help="Show snapshot version and size")

    p_serve = sub.add_parser("serve", help="Run the handbook API")
    p_serve.add_argument("--host", type=str, default=None)
    p_serve.add_argument("--port", type=int, default=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.data is None:
        args.data = _default_data_path()

    if args.command == "serve":
        from unitracker.log import setup_logging

        setup_logging()
        raise SystemExit(_cmd_serve(args))

    payload = _load_payload(args.data)

    if args.command == "search":
        raise SystemExit(_cmd_search(args, payload))
    if args.command == "show":
        raise SystemExit(_cmd_show(args, payload))
    if args.command == "meta":
        raise SystemExit(_cmd_meta(args, payload))

    raise SystemExit(2)
