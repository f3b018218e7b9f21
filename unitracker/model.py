"""
Central data model definitions used across the project.

This module defines the canonical structure of the scraped handbook data so that:
- the parsers, the crawler and the API share the same field names
- the JSON snapshot keeps a fixed key order (diff-stable across re-scrapes)
- the consuming app can index items by subject code
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


Number = Union[int, float]


@dataclass
class SubjectStub:
    """
    Minimal per-subject data from one search-results row.
    """

    code: str
    name: str
    href: Optional[str]
    offered: str

    def __post_init__(self) -> None:
        self.code = self.code.strip().upper()


@dataclass
class AssessmentTable:
    """
    One assessment table of a study period.

    Each row maps a column label to the cell text.
    """

    columns: List[str]
    rows: List[Dict[str, str]]

    def to_dict(self) -> Dict[str, Any]:
        return {"columns": list(self.columns), "rows": [dict(r) for r in self.rows]}


@dataclass
class SubjectRecord:
    """
    Represents one fully enriched subject as stored in the snapshot.
    """

    code: str
    name: str
    year: int
    study_period: str
    credit_points: Optional[Number]
    overview: List[str]
    tables: List[AssessmentTable]
    instructor_emails: List[str]
    availability: str
    subject_url: str
    assessment_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "year": self.year,
            "studyPeriod": self.study_period,
            "creditPoints": self.credit_points,
            "overview": list(self.overview),
            "assessment": {"tables": [t.to_dict() for t in self.tables]},
            "instructorEmails": list(self.instructor_emails),
            "availability": self.availability,
            "source": {
                "subjectUrl": self.subject_url,
                "assessmentUrl": self.assessment_url,
            },
        }


@dataclass
class CrawlStats:
    total_found: int = 0
    total_saved: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalFound": self.total_found,
            "totalSaved": self.total_saved,
            "skipped": self.skipped,
        }


@dataclass
class Snapshot:
    """
    The versioned artifact of one complete crawl run.

    `version` is a content hash over the serialized items only, so two runs
    over identical pages produce the same token.
    """

    generated_at: str
    version: str
    search_url: str
    study_period: str
    year: int
    stats: CrawlStats
    items: List[SubjectRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "version": self.version,
            "source": {
                "searchUrl": self.search_url,
                "studyPeriod": self.study_period,
                "year": self.year,
            },
            "stats": self.stats.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }
