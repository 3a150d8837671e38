"""ICP filtering and scoring for scraped LinkedIn profiles (pure, no I/O).

Every configured criterion is evaluated once by ``evaluate_criteria``; the
boolean match and the 0-100 score are both derived from that list, so a
score of 100 always implies a match. Malformed input never raises: it yields
``None`` / ``False`` / ``0``.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, List, Mapping, Optional, Union

from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.signals.contracts import SENIORITY_LEVELS, HarvestProfile, ICPFilters


ProfileInput = Union[HarvestProfile, Mapping[str, Any], str, None]

_TITLE_SEPARATORS = (
    re.compile(r"\s+at\s+", re.IGNORECASE),
    re.compile(r"\s+@\s+"),
    re.compile(r"\s+\|\s+"),
    re.compile(r",\s+"),
)
_COMPANY_MARKER = re.compile(r"\s+(?:at|@)\s+(.+)$", re.IGNORECASE)
_COMPANY_TAIL = re.compile(r"\s+[|·–-]\s+|,\s+")
_WORD = re.compile(r"[\w&+#]+")

_SENIORITY_PATTERNS = (
    (
        "c_level",
        re.compile(
            r"\b(chief|ceo|cto|cfo|coo|cmo|cro|cpo|ciso|founder|cofounder|owner|partner)\b"
            r"|(?<!vice )(?<!vice-)\bpresident\b",
            re.IGNORECASE,
        ),
    ),
    ("vp", re.compile(r"\b(vp|svp|evp|avp)\b|\bvice[\s-]president\b", re.IGNORECASE)),
    ("director", re.compile(r"\b(director|head)\b", re.IGNORECASE)),
    ("manager", re.compile(r"\b(manager|lead|supervisor)\b", re.IGNORECASE)),
)

logger = get_logger("magnetlab.signals.icp_filter")


@dataclass(frozen=True)
class CriterionResult:
    name: str
    satisfied: bool


def _as_profile(profile: ProfileInput) -> Optional[HarvestProfile]:
    if isinstance(profile, HarvestProfile):
        return profile
    if isinstance(profile, str):
        headline = profile.strip()
        return HarvestProfile(headline=headline) if headline else None
    if isinstance(profile, Mapping):
        return HarvestProfile.from_payload(profile)
    return None


def _title_from_headline(headline: Optional[str]) -> Optional[str]:
    if not headline or not headline.strip():
        return None
    trimmed = headline.strip()
    for separator in _TITLE_SEPARATORS:
        match = separator.search(trimmed)
        if match is not None:
            return trimmed[: match.start()].strip() or None
    return trimmed


def _company_from_headline(headline: Optional[str]) -> Optional[str]:
    if not headline or not headline.strip():
        return None
    match = _COMPANY_MARKER.search(headline.strip())
    if match is None:
        return None
    company = _COMPANY_TAIL.split(match.group(1), maxsplit=1)[0]
    return company.strip() or None


def extract_job_title(profile: ProfileInput) -> Optional[str]:
    """Best-effort job title: structured position first, then headline parsing."""

    parsed = _as_profile(profile)
    if parsed is None:
        return None
    if parsed.current_title:
        return parsed.current_title
    return _title_from_headline(parsed.headline)


def extract_company(profile: ProfileInput) -> Optional[str]:
    """Current employer: structured company first, then "Title at Company" parsing."""

    parsed = _as_profile(profile)
    if parsed is None:
        return None
    if parsed.current_company:
        return parsed.current_company
    return _company_from_headline(parsed.headline)


def infer_seniority(title: Optional[str]) -> Optional[str]:
    if not title or not title.strip():
        return None
    for level, pattern in _SENIORITY_PATTERNS:
        if pattern.search(title):
            return level
    return "ic"


def _words(text: str) -> List[str]:
    return _WORD.findall(text.casefold())


def keyword_matches(keyword: str, text: Optional[str]) -> bool:
    """Case-insensitive substring match, or every keyword word present as a word."""

    if not text or not keyword:
        return False
    folded_keyword = keyword.casefold().strip()
    if not folded_keyword:
        return False
    if folded_keyword in text.casefold():
        return True
    keyword_words = _words(folded_keyword)
    return bool(keyword_words) and set(keyword_words).issubset(_words(text))


def _word_match(name: str, text: Optional[str]) -> bool:
    if not text or not name.strip():
        return False
    if name.casefold().strip() == text.casefold().strip():
        return True
    name_words = _words(name)
    return bool(name_words) and set(name_words).issubset(_words(text))


def evaluate_criteria(profile: ProfileInput, filters: ICPFilters) -> List[CriterionResult]:
    """Evaluate each configured criterion; unconfigured ones are omitted."""

    parsed = _as_profile(profile) or HarvestProfile()
    title = extract_job_title(parsed)
    company = extract_company(parsed)
    results: List[CriterionResult] = []

    if filters.job_title_keywords:
        results.append(
            CriterionResult(
                "job_title_keywords",
                any(keyword_matches(keyword, title) for keyword in filters.job_title_keywords),
            )
        )

    if filters.excluded_job_titles:
        title_text = parsed.headline or title
        results.append(
            CriterionResult(
                "excluded_job_titles",
                not any(keyword_matches(keyword, title_text) for keyword in filters.excluded_job_titles),
            )
        )

    if filters.excluded_companies:
        results.append(
            CriterionResult(
                "excluded_companies",
                not any(_word_match(name, company) for name in filters.excluded_companies),
            )
        )

    if filters.company_size_range:
        low, high = filters.company_size_range
        size = parsed.company_size
        within = size is not None and (low is None or size >= low) and (high is None or size <= high)
        results.append(CriterionResult("company_size_range", within))

    if filters.required_seniority:
        level = infer_seniority(title)
        satisfied = level is not None and SENIORITY_LEVELS.index(level) >= SENIORITY_LEVELS.index(
            filters.required_seniority
        )
        results.append(CriterionResult("required_seniority", satisfied))

    if filters.industry_keywords:
        industry_text = parsed.industry or parsed.headline
        results.append(
            CriterionResult(
                "industry_keywords",
                any(keyword_matches(keyword, industry_text) for keyword in filters.industry_keywords),
            )
        )

    if filters.target_countries:
        country = parsed.country_code
        results.append(
            CriterionResult("target_countries", country is None or country.upper() in filters.target_countries)
        )

    return results


def matches_icp(profile: ProfileInput, filters: ICPFilters) -> bool:
    """True iff every configured criterion holds; exclusions act as vetoes."""

    if filters.is_empty():
        return True
    try:
        return all(result.satisfied for result in evaluate_criteria(profile, filters))
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("icp_match_failed", error=str(exc))
        return False


def compute_icp_score(profile: ProfileInput, filters: ICPFilters) -> int:
    """Share of configured criteria satisfied, scaled to 0-100.

    No configured criteria means "match everything" and scores 100.
    """

    if filters.is_empty():
        return 100
    try:
        results = evaluate_criteria(profile, filters)
    except (TypeError, ValueError, AttributeError) as exc:
        logger.warning("icp_score_failed", error=str(exc))
        return 0
    satisfied = sum(1 for result in results if result.satisfied)
    return max(0, min(100, round(100 * satisfied / len(results))))
