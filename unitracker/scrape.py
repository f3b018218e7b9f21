"""
Handbook crawl (search pages -> subject pages -> JSON snapshot).

Phases, in order:
    INIT -> PAGINATING -> DEDUPING -> FETCHING_DETAILS -> SORTING
         -> HASHING -> WRITING -> DONE

Everything runs on one asyncio event loop. At most `concurrency` subjects are
in flight at any time; results and counters are only touched between awaits.

Failure policy:
- first search page unreachable / output not writable -> the run fails
- a subject page that cannot be fetched -> subject skipped
- assessment / dates-times page that cannot be fetched -> partial record
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from unitracker.config import ScrapeConfig, add_scrape_arguments, config_from_args
from unitracker.fetch import FetchError, Fetcher
from unitracker.log import setup_logging
from unitracker.model import AssessmentTable, CrawlStats, Snapshot, SubjectRecord, SubjectStub
from unitracker.parse import (
    make_soup,
    mentions_period,
    parse_assessment_tables,
    parse_availability,
    parse_credit_points,
    parse_max_page,
    parse_overview,
    parse_search_page,
    parse_semester_emails,
)
from unitracker.storage import compute_version, write_snapshot


log = logging.getLogger(__name__)

PROGRESS_EVERY = 10


class Phase(Enum):
    INIT = "init"
    PAGINATING = "paginating"
    DEDUPING = "deduping"
    FETCHING_DETAILS = "fetching_details"
    SORTING = "sorting"
    HASHING = "hashing"
    WRITING = "writing"
    DONE = "done"


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def page_url(search_url: str, page: int) -> str:
    """
    Return `search_url` with its `page` query parameter set to `page`.

    Other parameters (and their order) are preserved.
    """
    parts = urlsplit(search_url)
    query: List[tuple[str, str]] = []
    replaced = False
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == "page":
            if replaced:
                continue
            value = str(page)
            replaced = True
        query.append((key, value))
    if not replaced:
        query.append(("page", str(page)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def subject_url(base_url: str, stub: SubjectStub, year: int) -> str:
    href = stub.href or f"/{year}/subjects/{stub.code.lower()}"
    return urljoin(base_url.rstrip("/") + "/", href)


def child_url(url: str, suffix: str) -> str:
    # e.g. .../subjects/mast10006 -> .../subjects/mast10006/assessment
    return f"{url.rstrip('/')}/{suffix}"


def dedupe_stubs(stubs: List[SubjectStub]) -> List[SubjectStub]:
    """
    One stub per code; a later page's entry replaces an earlier one.
    """
    unique: Dict[str, SubjectStub] = {}
    for stub in stubs:
        if stub.code:
            unique[stub.code] = stub
    return list(unique.values())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


class Crawler:
    def __init__(
        self,
        config: ScrapeConfig,
        fetcher: Any,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self._sleep = sleep
        self.phase = Phase.INIT
        self.stats = CrawlStats()
        self.records: List[SubjectRecord] = []
        self.processed = 0

    def _enter(self, phase: Phase) -> None:
        log.debug("Phase %s -> %s", self.phase.name, phase.name)
        self.phase = phase

    async def _pause(self) -> None:
        await self._sleep(self.config.delay)

    def _in_period(self, text: str) -> bool:
        """
        Study-period filter. Empty text is treated as "unknown" and passes.
        """
        if not self.config.only_study_period or not text:
            return True
        return mentions_period(text, self.config.study_period)

    async def collect_stubs(self) -> List[SubjectStub]:
        """
        Walk the search pages in order and collect all stubs.
        """
        self._enter(Phase.PAGINATING)
        search_url = self.config.search_url

        # The first page must load, otherwise there is nothing to crawl
        first_html = await self.fetcher.fetch(page_url(search_url, 1))
        max_page = self.config.max_pages or parse_max_page(first_html)
        log.info("Search pages: %d", max_page)

        stubs: List[SubjectStub] = []
        for page in range(1, max_page + 1):
            if page == 1:
                html = first_html
            else:
                try:
                    html = await self.fetcher.fetch(page_url(search_url, page))
                except FetchError as e:
                    log.warning("Failed to fetch search page %d: %s. Stopping.", page, e)
                    break

            items = parse_search_page(html)
            if not items:
                log.info("No items found on page %d. Stopping.", page)
                break

            stubs.extend(items)
            log.info("Page %d: %d items", page, len(items))
            await self._pause()

        return stubs

    async def process(self, stub: SubjectStub) -> Optional[SubjectRecord]:
        """
        Fetch and extract one subject. Returns None when it is skipped.
        """
        cfg = self.config
        label = cfg.study_period

        # Cheap filter on the search listing before any request
        if not self._in_period(stub.offered):
            log.debug("SKIP  %s (offered: %s)", stub.code, stub.offered)
            self.stats.skipped += 1
            return None

        await self._pause()
        url = subject_url(cfg.base_url, stub, cfg.year)
        try:
            subject_html = await self.fetcher.fetch(url)
        except FetchError as e:
            log.warning("Failed to fetch subject %s: %s", stub.code, e)
            self.stats.skipped += 1
            return None

        subject_doc = make_soup(subject_html)
        availability = parse_availability(subject_doc)

        # The detail page is authoritative; the listing hint can be stale
        if not self._in_period(availability):
            log.debug("SKIP  %s (availability: %s)", stub.code, availability)
            self.stats.skipped += 1
            return None

        overview = parse_overview(subject_doc)
        credit_points = parse_credit_points(subject_doc)

        await self._pause()
        assessment_url = child_url(url, "assessment")
        tables: List[AssessmentTable] = []
        emails: List[str] = []
        try:
            assessment_doc = make_soup(await self.fetcher.fetch(assessment_url))
            tables = parse_assessment_tables(assessment_doc, label)
            emails = parse_semester_emails(assessment_doc, label)
        except FetchError as e:
            log.warning("Failed to fetch assessment %s: %s", stub.code, e)

        if not emails:
            try:
                await self._pause()
                dates_html = await self.fetcher.fetch(child_url(url, "dates-times"))
                emails = parse_semester_emails(dates_html, label)
            except FetchError as e:
                log.warning("Failed to fetch dates-times %s: %s", stub.code, e)

        return SubjectRecord(
            code=stub.code,
            name=stub.name,
            year=cfg.year,
            study_period=label,
            credit_points=credit_points,
            overview=overview,
            tables=tables,
            instructor_emails=emails,
            availability=availability,
            subject_url=url,
            assessment_url=assessment_url,
        )

    async def fetch_details(self, candidates: List[SubjectStub]) -> None:
        """
        Run process() over all candidates with at most `concurrency` in flight.
        """
        self._enter(Phase.FETCHING_DETAILS)
        total = len(candidates)
        queue: asyncio.Queue[SubjectStub] = asyncio.Queue()
        for stub in candidates:
            queue.put_nowait(stub)

        async def worker() -> None:
            while True:
                try:
                    stub = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                try:
                    record = await self.process(stub)
                except Exception:
                    # One broken subject must not take the crawl down
                    log.exception("Unexpected error while processing %s", stub.code)
                    self.stats.skipped += 1
                    record = None

                if record is not None:
                    self.records.append(record)
                self.processed += 1
                if self.processed % PROGRESS_EVERY == 0:
                    log.info("Processed %d/%d", self.processed, total)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.config.concurrency, total))]
        await asyncio.gather(*workers)

    async def crawl(self) -> Snapshot:
        """
        Run every phase up to (not including) writing the file.
        """
        stubs = await self.collect_stubs()

        self._enter(Phase.DEDUPING)
        candidates = dedupe_stubs(stubs)
        self.stats.total_found = len(candidates)
        log.info("Total unique subjects: %d", len(candidates))

        await self.fetch_details(candidates)

        self._enter(Phase.SORTING)
        items = sorted(self.records, key=lambda r: r.code)
        self.stats.total_saved = len(items)

        self._enter(Phase.HASHING)
        version = compute_version(items)

        return Snapshot(
            generated_at=utc_now_iso(),
            version=version,
            search_url=page_url(self.config.search_url, 1),
            study_period=self.config.study_period,
            year=self.config.year,
            stats=self.stats,
            items=items,
        )

    async def run(self) -> Snapshot:
        snapshot = await self.crawl()
        self._enter(Phase.WRITING)
        write_snapshot(snapshot, self.config.output_path)
        self._enter(Phase.DONE)
        return snapshot


async def scrape(config: ScrapeConfig, fetcher: Optional[Any] = None) -> Snapshot:
    """
    Crawl the handbook and write the snapshot to config.output_path.
    """
    if fetcher is not None:
        return await Crawler(config, fetcher).run()

    async with Fetcher(retries=config.retries) as own_fetcher:
        return await Crawler(config, own_fetcher).run()


# ---------------------------------------------------------------------------
# CLI entry
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="unitracker.scrape",
        description="Scrape the university handbook into a versioned JSON snapshot",
    )
    add_scrape_arguments(p)
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    setup_logging(config.verbose)

    try:
        snapshot = asyncio.run(scrape(config))
    except Exception as e:
        log.exception("Scrape failed: %s", e)
        raise SystemExit(1)

    print(f"Saved {len(snapshot.items)} subjects to {config.output_path}")


if __name__ == "__main__":
    main()
