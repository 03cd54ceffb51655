"""
In-memory summary store for the Summary Always MCP server.

Holds the summary records for the lifetime of the process, derives their
metadata (day-stamp, refined content, keywords) and flushes them to a
per-day markdown log on demand:
- add: refine content, derive keywords, assign a monotonic id
- list_summaries: keyword filter + tail limit over insertion order
- stats / clear: counts and bulk reset
- save_to_file: create-or-append a "<YYYYMMDD>.md" audit block
"""

from typing import Callable, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime
from pathlib import Path
import asyncio
import aiofiles
import aiofiles.os
from collections import defaultdict
import logging
import os

# Environment variable selecting the default save directory
STORAGE_PATH_ENV = "SUMMARY_STORAGE_PATH"

SUMMARY_CONFIG = {
    "max_content_length": 200,
    "ellipsis": "...",
    # Preferred truncation points: full-stop, comma, space
    "break_chars": ("。", "，", " "),
    # Terms tagged automatically when they occur in the content
    "curated_keywords": ["创意"],
    "save_header_label": "保存时间",
}


# ============================================================================
# Errors
# ============================================================================

class SummaryStoreError(Exception):
    """Base class for failures surfaced to tool callers."""


class InvalidArgument(SummaryStoreError, ValueError):
    """Missing or malformed tool argument."""


class NothingToSave(SummaryStoreError):
    """Save requested while the store is empty."""


class IOFailure(SummaryStoreError, OSError):
    """Directory or file operation failed during a save."""


class UnknownOperation(SummaryStoreError, LookupError):
    """Tool name not recognized by the server."""


# ============================================================================
# Data Models
# ============================================================================

class SummaryRecord(BaseModel):
    """Schema for a stored summary. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str
    day_stamp: str
    content: str
    keywords: Tuple[str, ...] = ()
    created_at: datetime

    def format(self) -> str:
        """Render as "<YYYYMMDD> <tags> <content>".

        The tag segment is always present; an untagged record keeps an empty
        slot ("20260211  text").
        """
        tags = " ".join(f"#{keyword}" for keyword in self.keywords)
        return f"{self.day_stamp} {tags} {self.content}"


class _WireModel(BaseModel):
    # Results cross the tool boundary with camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddResult(_WireModel):
    id: str
    refined_content: str
    formatted_summary: str


class SummaryStats(_WireModel):
    total: int
    latest_day_stamp: Optional[str] = None
    keyword_counts: Dict[str, int]


class SaveResult(_WireModel):
    file_path: str
    saved_count: int
    summaries: List[str]


# ============================================================================
# Helper Functions
# ============================================================================

def format_day_stamp(moment: datetime) -> str:
    """Format a local datetime as YYYYMMDD."""
    return moment.strftime("%Y%m%d")


def format_local_time(moment: datetime) -> str:
    """Format a local datetime as YYYY-MM-DD HH:MM:SS."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def refine_content(content: str, max_length: Optional[int] = None) -> str:
    """Trim content to at most max_length characters.

    Short content is kept verbatim. Longer content is cut after the last
    break character in the window, provided that point lies past the middle
    of max_length, otherwise at the window edge; the ellipsis marker is
    appended in both cases and counts toward max_length.
    """
    if max_length is None:
        max_length = SUMMARY_CONFIG["max_content_length"]
    if len(content) <= max_length:
        return content

    ellipsis = SUMMARY_CONFIG["ellipsis"]
    window = content[:max_length - len(ellipsis)]
    cut_index = max(window.rfind(char) for char in SUMMARY_CONFIG["break_chars"])
    if cut_index > max_length * 0.5:
        return window[:cut_index + 1] + ellipsis
    return window + ellipsis


def extract_keywords(content: str, provided: Optional[List[str]] = None) -> List[str]:
    """Merge caller keywords with curated terms found in the content.

    Caller keywords keep their order and lose one leading '#'. Duplicates
    collapse on exact match; curated terms match case-insensitively.
    """
    keywords: Dict[str, None] = {}

    for keyword in provided or []:
        clean = keyword[1:] if keyword.startswith("#") else keyword
        keywords.setdefault(clean, None)

    content_lower = content.lower()
    for keyword in SUMMARY_CONFIG["curated_keywords"]:
        if keyword.lower() in content_lower:
            keywords.setdefault(keyword, None)

    return list(keywords)


def resolve_storage_dir(custom_path: Optional[str] = None) -> Path:
    """Pick the save directory: argument, then environment, then home."""
    storage_path = custom_path or os.getenv(STORAGE_PATH_ENV)
    if not storage_path:
        return Path.home()
    return Path(storage_path).expanduser()


# ============================================================================
# Store
# ============================================================================

class SummaryStore:
    """Process-scoped collection of summary records.

    Args:
        clock: Returns the current local time. Defaults to datetime.now.
        logger: Receives diagnostic traces. Defaults to this module's logger.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None,
    ):
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)
        self._records: List[SummaryRecord] = []
        self._next_id = 1
        # Serializes exists-check + write per target file
        self._file_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> Tuple[SummaryRecord, ...]:
        return tuple(self._records)

    def add(self, content: str, keywords: Optional[List[str]] = None) -> AddResult:
        """Refine, tag and append a new summary."""
        if not isinstance(content, str) or not content:
            raise InvalidArgument("Invalid content: must be a non-empty string")
        if keywords is not None and not all(isinstance(k, str) for k in keywords):
            raise InvalidArgument("Invalid keywords: must be a list of strings")

        refined = refine_content(content)
        now = self._clock()
        record = SummaryRecord(
            id=f"summary-{self._next_id}",
            day_stamp=format_day_stamp(now),
            content=refined,
            keywords=tuple(extract_keywords(refined, keywords)),
            created_at=now,
        )
        self._next_id += 1
        self._records.append(record)

        formatted = record.format()
        self._log.info("Summary added: id=%s | %s", record.id, formatted)

        return AddResult(
            id=record.id,
            refined_content=refined,
            formatted_summary=formatted,
        )

    def list_summaries(
        self,
        filter_keywords: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        """Formatted summaries, optionally keyword-filtered and tail-limited.

        A record matches when any of its keywords contains any filter term,
        compared case-insensitively. limit keeps the most recent N matches
        in their original order.
        """
        records = self._records

        if filter_keywords:
            terms = [term.lower() for term in filter_keywords]
            records = [
                record for record in records
                if any(term in keyword.lower() for term in terms for keyword in record.keywords)
            ]

        if limit and limit > 0:
            records = records[-limit:]

        return [record.format() for record in records]

    def stats(self) -> SummaryStats:
        keyword_counts: Dict[str, int] = defaultdict(int)
        for record in self._records:
            for keyword in record.keywords:
                keyword_counts[keyword] += 1

        return SummaryStats(
            total=len(self._records),
            latest_day_stamp=self._records[-1].day_stamp if self._records else None,
            keyword_counts=dict(keyword_counts),
        )

    def clear(self) -> int:
        """Drop every record and restart ids. Returns how many were dropped."""
        count = len(self._records)
        self._records = []
        self._next_id = 1
        self._log.info("Cleared %d summaries", count)
        return count

    async def save_to_file(self, custom_path: Optional[str] = None) -> SaveResult:
        """Write all current summaries to "<YYYYMMDD>.md" under a new header.

        The file is created when absent and appended to otherwise, so repeated
        saves on one day accumulate timestamped blocks. Every save re-emits
        the full in-memory set.

        Args:
            custom_path: Directory overriding SUMMARY_STORAGE_PATH and home.

        Returns:
            SaveResult with the file path, number of lines written and the
            summaries themselves.
        """
        summaries = self.list_summaries()
        if not summaries:
            raise NothingToSave("No summaries to save")

        storage_dir = resolve_storage_dir(custom_path)
        now = self._clock()
        file_path = storage_dir / f"{format_day_stamp(now)}.md"

        header = f"=== {SUMMARY_CONFIG['save_header_label']}: {format_local_time(now)} ===\n"
        block = header + "".join(f"{summary}\n" for summary in summaries)

        try:
            if not await aiofiles.os.path.isdir(storage_dir):
                await aiofiles.os.makedirs(storage_dir, exist_ok=True)
                self._log.info("Created directory: %s", storage_dir)

            async with self._file_locks[str(file_path)]:
                file_exists = await aiofiles.os.path.exists(file_path)
                mode = "a" if file_exists else "w"
                async with aiofiles.open(file_path, mode, encoding="utf-8") as f:
                    await f.write(block)
        except OSError as e:
            self._log.error("Failed to save summaries to %s: %s", file_path, e)
            raise IOFailure(f"Failed to save summaries to {file_path}: {e}") from e

        self._log.info(
            "Summaries %s: %s | count=%d",
            "appended to existing file" if file_exists else "saved to new file",
            file_path,
            len(summaries),
        )

        return SaveResult(
            file_path=str(file_path),
            saved_count=len(summaries),
            summaries=summaries,
        )
