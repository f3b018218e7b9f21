"""
Runtime configuration.

Settings are resolved once at process start (command line first, then
environment, then defaults) into frozen dataclasses that are passed into the
crawler / API. Nothing below reads os.environ after startup.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.parse import parse_qs, urlsplit


DEFAULT_SEARCH_URL = (
    "https://handbook.unimelb.edu.au/search?area_of_study%5B%5D=all&attendance_mode%5B%5D=all"
    "&campus%5B%5D=all&org_unit%5B%5D=all&page=1&query=mast&sort=_score%7Cdesc"
    "&study_periods%5B%5D=all&subject_level_type%5B%5D=undergraduate&types%5B%5D=subject&year=2026"
)
DEFAULT_OUTPUT = Path("public") / "data" / "handbook-2026-s1.json"
DEFAULT_STUDY_PERIOD = "Semester 1"
DEFAULT_YEAR = 2026
DEFAULT_CONCURRENCY = 4
DEFAULT_DELAY_MS = 200
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 5174

TRUE_VALUES = {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Value parsers (used as argparse types, so env fallbacks are validated too)
# ---------------------------------------------------------------------------


def non_negative_int(value: str) -> int:
    try:
        n = int(str(value).strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected a value >= 0, got {n}")
    return n


def positive_int(value: str) -> int:
    n = non_negative_int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a value >= 1, got {n}")
    return n


def env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in TRUE_VALUES


def year_from_url(url: str) -> Optional[int]:
    """
    Read the `year` query parameter of a search URL, if it is a number.
    """
    values = parse_qs(urlsplit(url).query).get("year", [])
    for v in values:
        if v.strip().isdigit():
            return int(v)
    return None


# ---------------------------------------------------------------------------
# Scraper settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScrapeConfig:
    search_url: str = DEFAULT_SEARCH_URL
    output_path: Path = DEFAULT_OUTPUT
    max_pages: int = 0
    concurrency: int = DEFAULT_CONCURRENCY
    delay_ms: int = DEFAULT_DELAY_MS
    only_study_period: bool = True
    study_period: str = DEFAULT_STUDY_PERIOD
    year: int = DEFAULT_YEAR
    retries: int = 3
    verbose: bool = False

    @property
    def delay(self) -> float:
        return self.delay_ms / 1000.0

    @property
    def base_url(self) -> str:
        parts = urlsplit(self.search_url)
        return f"{parts.scheme}://{parts.netloc}"


def add_scrape_arguments(parser: argparse.ArgumentParser, env: Mapping[str, str] | None = None) -> None:
    """
    Register the scraper options. Environment variables act as defaults.
    """
    env = os.environ if env is None else env

    parser.add_argument("--search", default=env.get("HANDBOOK_SEARCH_URL") or DEFAULT_SEARCH_URL, help="Search URL")
    parser.add_argument(
        "--output", type=Path, default=env.get("HANDBOOK_OUTPUT") or str(DEFAULT_OUTPUT), help="Output JSON path"
    )
    parser.add_argument(
        "--max-pages",
        type=non_negative_int,
        default=env.get("HANDBOOK_MAX_PAGES") or "0",
        help="Number of search pages to crawl (0 = detect from pagination)",
    )
    parser.add_argument(
        "--concurrency",
        type=positive_int,
        default=env.get("HANDBOOK_CONCURRENCY") or str(DEFAULT_CONCURRENCY),
        help="Subjects processed in parallel",
    )
    parser.add_argument(
        "--delay-ms",
        type=non_negative_int,
        default=env.get("HANDBOOK_DELAY_MS") or str(DEFAULT_DELAY_MS),
        help="Pause between requests (milliseconds)",
    )
    parser.add_argument(
        "--all-semesters",
        action="store_true",
        default=env_flag(env, "HANDBOOK_ALL_SEMESTERS"),
        help="Keep subjects of every study period (disables the study-period filter)",
    )
    parser.add_argument(
        "--study-period",
        default=env.get("HANDBOOK_STUDY_PERIOD") or DEFAULT_STUDY_PERIOD,
        help="Study period label, e.g. 'Semester 1'",
    )
    parser.add_argument(
        "--year",
        type=positive_int,
        default=env.get("HANDBOOK_YEAR") or None,
        help="Handbook year (default: from the search URL)",
    )
    parser.add_argument(
        "--retries",
        type=non_negative_int,
        default=env.get("HANDBOOK_RETRIES") or "3",
        help="Retries per request on 5xx/429/network errors",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def config_from_args(args: argparse.Namespace) -> ScrapeConfig:
    search_url = str(args.search).strip()
    year = args.year or year_from_url(search_url) or DEFAULT_YEAR
    return ScrapeConfig(
        search_url=search_url,
        output_path=Path(args.output),
        max_pages=args.max_pages,
        concurrency=args.concurrency,
        delay_ms=args.delay_ms,
        only_study_period=not args.all_semesters,
        study_period=str(args.study_period).strip() or DEFAULT_STUDY_PERIOD,
        year=year,
        retries=args.retries,
        verbose=args.verbose,
    )


# ---------------------------------------------------------------------------
# API settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiSettings:
    data_path: Path = DEFAULT_OUTPUT
    refresh_token: str = ""
    host: str = DEFAULT_API_HOST
    port: int = DEFAULT_API_PORT
    refresh_command: Optional[List[str]] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ApiSettings":
        env = os.environ if env is None else env
        port = env.get("HANDBOOK_API_PORT", "").strip()
        return cls(
            data_path=Path(env.get("HANDBOOK_DATA_PATH") or DEFAULT_OUTPUT),
            refresh_token=env.get("HANDBOOK_REFRESH_TOKEN", ""),
            host=env.get("HANDBOOK_API_HOST") or DEFAULT_API_HOST,
            port=int(port) if port.isdigit() else DEFAULT_API_PORT,
        )
