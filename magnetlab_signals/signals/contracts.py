"""Typed contracts for scraped LinkedIn data, ICP filters and engager batches.

Scraped payloads are loosely shaped and vary by endpoint, so every parser here
is tolerant: structured fields are tried first, anything unexpected becomes
``None`` and parsing never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


SignalType = Literal["comment", "reaction", "post_authorship"]
Sentiment = Literal["positive", "neutral", "negative"]
MonitorKind = Literal["keyword", "company", "profile"]
Seniority = Literal["ic", "manager", "director", "vp", "c_level"]

SIGNAL_TYPES = ("comment", "reaction", "post_authorship")
SENTIMENTS = ("positive", "neutral", "negative")
MONITOR_KINDS = ("keyword", "company", "profile")
SENIORITY_LEVELS = ("ic", "manager", "director", "vp", "c_level")

_SIZE_BAND = re.compile(r"(\d[\d,]*)")
_MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    normalized = str(value).strip()
    return normalized or None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, list):
        for item in value:
            if isinstance(item, Mapping):
                return item
    return _mapping(value)


def _company_size(value: Any) -> Optional[int]:
    """Parse ``250``, ``"1,001-5,000"`` or ``"51-200 employees"`` to a headcount.

    Bands resolve to their lower bound.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    text = _text(value)
    if text is None:
        return None
    match = _SIZE_BAND.search(text)
    if match is None:
        return None
    return int(match.group(1).replace(",", ""))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch milliseconds/seconds or ISO-8601 strings into aware UTC datetimes."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = _text(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    text = _text(value)
    if text is None:
        return None
    digits = text.replace(",", "").rstrip("+")
    return int(digits) if digits.isdigit() else None


def _flag(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _start_date(value: Any) -> Optional[datetime]:
    """Experience start: ISO date text or a ``{"year": 2026, "month": 9}`` mapping."""

    if isinstance(value, Mapping):
        year, month = value.get("year"), value.get("month")
        if isinstance(month, str):
            month = _MONTHS.get(month.strip()[:3].lower())
        if isinstance(year, int) and not isinstance(year, bool):
            month = month if isinstance(month, int) and 1 <= month <= 12 else 1
            try:
                return datetime(year, month, 1, tzinfo=timezone.utc)
            except ValueError:
                return None
        return parse_timestamp(value.get("text"))
    if isinstance(value, (int, float)):
        return None
    return parse_timestamp(value)


class HarvestProfile(BaseModel):
    """Normalized view of a scraped LinkedIn profile or engagement actor."""

    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    headline: Optional[str] = None
    current_title: Optional[str] = None
    current_company: Optional[str] = None
    company_size: Optional[int] = None
    industry: Optional[str] = None
    country_code: Optional[str] = None
    linkedin_url: Optional[str] = None
    connections_count: Optional[int] = None
    follower_count: Optional[int] = None
    open_to_work: Optional[bool] = None
    hiring: Optional[bool] = None
    current_role_started_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "HarvestProfile":
        """Build a profile from a ``/linkedin/profile`` body or an engagement ``actor``."""

        data = _mapping(payload)
        if not data:
            return cls()

        first_name = _text(data.get("firstName"))
        last_name = _text(data.get("lastName"))
        full_name = _text(data.get("name"))
        if full_name is None and (first_name or last_name):
            full_name = " ".join(part for part in (first_name, last_name) if part)

        current = _first_mapping(data.get("currentPosition"))
        experience = data.get("experience") if isinstance(data.get("experience"), list) else []
        open_role: Mapping[str, Any] = {}
        for entry in experience:
            if isinstance(entry, Mapping) and not entry.get("endDate"):
                open_role = entry
                break

        location = _mapping(data.get("location"))
        parsed_location = _mapping(location.get("parsed"))
        country_code = _text(parsed_location.get("countryCode")) or _text(location.get("countryCode"))

        return cls(
            full_name=full_name,
            first_name=first_name,
            last_name=last_name,
            headline=_text(data.get("headline")) or _text(data.get("position")),
            current_title=_text(current.get("position")) or _text(current.get("title")) or _text(open_role.get("position")),
            current_company=_text(current.get("companyName")) or _text(open_role.get("companyName")),
            company_size=_company_size(
                data.get("companySize")
                or current.get("companyEmployeesCount")
                or current.get("companySize")
            ),
            industry=_text(data.get("industry")) or _text(current.get("industry")) or _text(open_role.get("industry")),
            country_code=country_code.upper() if country_code else None,
            linkedin_url=_text(data.get("linkedinUrl")) or _text(data.get("url")),
            connections_count=_count(data.get("connectionsCount")),
            follower_count=_count(data.get("followerCount")),
            open_to_work=_flag(data.get("openToWork")),
            hiring=_flag(data.get("hiring")),
            current_role_started_at=_start_date(_first_mapping(experience).get("startDate")),
            raw=dict(data),
        )


class HarvestPost(BaseModel):
    model_config = ConfigDict(extra="forbid")

    post_id: Optional[str] = None
    linkedin_url: Optional[str] = None
    content: Optional[str] = None
    author_name: Optional[str] = None
    author: Optional[HarvestProfile] = None
    posted_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "HarvestPost":
        data = _mapping(payload)
        author_payload = _mapping(data.get("author"))
        author = HarvestProfile.from_payload(author_payload) if author_payload else None
        posted = _mapping(data.get("postedAt"))
        return cls(
            post_id=_text(data.get("id")),
            linkedin_url=_text(data.get("linkedinUrl")),
            content=_text(data.get("content")),
            author_name=_text(data.get("name")) or (author.full_name if author else None),
            author=author,
            posted_at=parse_timestamp(posted.get("timestamp")) or parse_timestamp(posted.get("date")),
        )


class HarvestEngagement(BaseModel):
    """A comment or reaction on a post, reduced to actor + optional text."""

    model_config = ConfigDict(extra="forbid")

    profile: HarvestProfile
    text: Optional[str] = None
    occurred_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "HarvestEngagement":
        data = _mapping(payload)
        return cls(
            profile=HarvestProfile.from_payload(data.get("actor")),
            text=_text(data.get("commentary")),
            occurred_at=parse_timestamp(data.get("createdAtTimestamp")) or parse_timestamp(data.get("createdAt")),
        )


def _keyword_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    seen: Dict[str, str] = {}
    for item in value:
        normalized = _text(item)
        if normalized and normalized.lower() not in seen:
            seen[normalized.lower()] = normalized
    return list(seen.values())


class ICPFilters(BaseModel):
    """Ideal-customer-profile criteria; an empty or unset criterion never excludes."""

    model_config = ConfigDict(extra="forbid")

    job_title_keywords: List[str] = Field(default_factory=list)
    company_size_range: Optional[List[Optional[int]]] = None
    excluded_companies: List[str] = Field(default_factory=list)
    required_seniority: Optional[Seniority] = None
    industry_keywords: List[str] = Field(default_factory=list)
    target_countries: List[str] = Field(default_factory=list)
    excluded_job_titles: List[str] = Field(default_factory=list)

    @field_validator(
        "job_title_keywords",
        "excluded_companies",
        "industry_keywords",
        "excluded_job_titles",
        mode="before",
    )
    @classmethod
    def _normalize_keywords(cls, value: Any) -> List[str]:
        return _keyword_list(value)

    @field_validator("target_countries", mode="before")
    @classmethod
    def _normalize_countries(cls, value: Any) -> List[str]:
        return [code.upper() for code in _keyword_list(value)]

    @field_validator("required_seniority", mode="before")
    @classmethod
    def _normalize_seniority(cls, value: Any) -> Optional[str]:
        normalized = _text(value)
        return normalized.lower() if normalized else None

    @field_validator("company_size_range", mode="before")
    @classmethod
    def _normalize_size_range(cls, value: Any) -> Optional[List[Optional[int]]]:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ValueError("company_size_range must be [min, max]")
        low, high = (None if bound is None else int(bound) for bound in value)
        if low is None and high is None:
            return None
        if low is not None and high is not None and low > high:
            raise ValueError("company_size_range min must not exceed max")
        return [low, high]

    def is_empty(self) -> bool:
        return not (
            self.job_title_keywords
            or self.company_size_range
            or self.excluded_companies
            or self.required_seniority
            or self.industry_keywords
            or self.target_countries
            or self.excluded_job_titles
        )


@dataclass(frozen=True)
class Engager:
    """One engagement to ingest: who engaged, how, and where."""

    profile: HarvestProfile
    signal_type: SignalType
    sentiment: Optional[Sentiment] = None
    occurred_at: Optional[datetime] = None
    snippet: Optional[str] = None
    source_url: Optional[str] = None
    keyword_matched: Optional[str] = None


@dataclass(frozen=True)
class ProcessResult:
    processed: int
    matched: int
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class OutboundLead:
    """A qualified lead as handed to the outreach tool."""

    lead_id: str
    linkedin_url: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    icp_score: int = 0
    compound_score: int = 0


@dataclass(frozen=True)
class PushOutcome:
    lead_id: str
    accepted: bool
    error: Optional[str] = None
