"""Signal engine: lead upserts, engagement events and compound scoring.

The lead store is the only shared mutable resource. Every mutation goes through
``upsert_lead`` / ``record_event``; both are scoped by workspace and commit on
success, so a lead row always exists before an event references it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.core.metrics import record_engagers
from magnetlab_signals.core.observability import capture_exception
from magnetlab_signals.signals.config_source import FiltersProvider, session_filters_provider
from magnetlab_signals.signals.contracts import (
    MONITOR_KINDS,
    SENTIMENTS,
    SIGNAL_TYPES,
    Engager,
    HarvestProfile,
    ProcessResult,
)
from magnetlab_signals.signals.errors import MalformedProfileError, PersistenceError, SignalPipelineError
from magnetlab_signals.signals.icp_filter import compute_icp_score, extract_company, extract_job_title, matches_icp
from magnetlab_signals.signals.key_locks import KeyedLocks
from magnetlab_signals.signals.sentiment import KeywordSentimentClassifier, SentimentClassifier
from magnetlab_signals.storage.models import SignalEvent, SignalLead, SignalMonitor


LINKEDIN_HOST = "www.linkedin.com"
LINKEDIN_HOST_SUFFIX = "linkedin.com"
LINKEDIN_ORIGIN = f"https://{LINKEDIN_HOST}"

MONITOR_KIND_WEIGHTS = {"keyword": 15, "company": 10, "profile": 10}
SENTIMENT_BONUS = {"positive": 15, "neutral": 5, "negative": 0}
ENGAGEMENT_BONUS = {"comment": 5, "post_authorship": 5, "reaction": 0}
MAX_COMPOUND_SCORE = 100

_SENTIMENT_RANK = {"negative": 0, "neutral": 1, "positive": 2}
_RESCORED_STATUSES = {"qualified", "excluded"}
_ROLE_FIELDS = ("current_title", "current_company", "current_role_started_at")
_MAX_ERRORS_REPORTED = 20
_MIN_TICK = timedelta(microseconds=1)
_BARE_LINKEDIN_HOST = re.compile(r"^(?:[a-z0-9-]+\.)*linkedin\.com(?:[/:?#]|$)", re.IGNORECASE)

logger = get_logger("magnetlab.signals.engine")

_shared_key_locks = KeyedLocks()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    # SQLite hands timezone-aware columns back naive.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_linkedin_url(url: Optional[str]) -> Optional[str]:
    """Canonical lead key: lowercase, no query, fragment or trailing slash.

    LinkedIn hosts (bare, ``www.`` or country subdomains) collapse to
    ``https://www.linkedin.com``.
    """

    if url is None:
        return None
    trimmed = url.strip()
    if not trimmed:
        return None
    if trimmed.startswith("/"):
        trimmed = f"{LINKEDIN_ORIGIN}{trimmed}"
    elif trimmed.lower().startswith(("in/", "company/")):
        trimmed = f"{LINKEDIN_ORIGIN}/{trimmed}"
    elif "://" not in trimmed and _BARE_LINKEDIN_HOST.match(trimmed):
        trimmed = f"https://{trimmed}"

    parts = urlsplit(trimmed)
    if not parts.scheme or not parts.netloc:
        return None
    scheme, netloc = parts.scheme, parts.netloc
    host = (parts.hostname or "").lower()
    if host == LINKEDIN_HOST_SUFFIX or host.endswith(f".{LINKEDIN_HOST_SUFFIX}"):
        scheme, netloc = "https", LINKEDIN_HOST
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, "", "")).lower()


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """``"John Michael Smith"`` -> ``("John", "Michael Smith")``."""

    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def _stored_profile(lead: SignalLead) -> HarvestProfile:
    if not lead.profile_json:
        return HarvestProfile(
            headline=lead.headline,
            current_title=lead.job_title,
            current_company=lead.company,
            country_code=lead.country,
        )
    try:
        return HarvestProfile.model_validate_json(lead.profile_json)
    except ValueError:
        logger.warning("signal_lead_profile_json_invalid", lead_id=lead.id)
        return HarvestProfile(headline=lead.headline, country_code=lead.country)


def _merge_profiles(base: HarvestProfile, incoming: HarvestProfile) -> HarvestProfile:
    """Newer non-empty fields win; fields the new sighting lacks keep their stored value.

    A changed headline means the stored structured role is stale, so it is
    dropped and only the incoming profile's role (if any) survives.
    """

    if incoming.headline and incoming.headline != base.headline:
        base = base.model_copy(update=dict.fromkeys(_ROLE_FIELDS))
    updates = {
        key: value
        for key, value in incoming.model_dump(exclude={"raw"}).items()
        if value is not None
    }
    return base.model_copy(update=updates)


def _best_sentiment(values: Iterable[Optional[str]]) -> Optional[str]:
    ranked = [value for value in values if value in _SENTIMENT_RANK]
    if not ranked:
        return None
    return max(ranked, key=lambda value: _SENTIMENT_RANK[value])


def compound_score(events: Sequence[SignalEvent]) -> int:
    """Monitor-kind weights count once per kind; sentiment and engagement bonuses per event."""

    kinds = {event.monitor_kind for event in events if event.monitor_kind}
    score = sum(MONITOR_KIND_WEIGHTS.get(kind, 0) for kind in kinds)
    for event in events:
        score += SENTIMENT_BONUS.get(event.sentiment or "", 0)
        score += ENGAGEMENT_BONUS.get(event.signal_type, 0)
    return max(0, min(MAX_COMPOUND_SCORE, score))


class SignalEngine:
    def __init__(
        self,
        session: Session,
        *,
        filters_provider: Optional[FiltersProvider] = None,
        sentiment_classifier: Optional[SentimentClassifier] = None,
        key_locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session = session
        self._filters_provider = filters_provider or session_filters_provider(session)
        self._sentiment = sentiment_classifier or KeywordSentimentClassifier()
        self._key_locks = key_locks or _shared_key_locks
        self._clock = clock

    @property
    def session(self) -> Session:
        return self._session

    def _now_after(self, previous: Optional[datetime]) -> datetime:
        now = _as_utc(self._clock())
        previous = _as_utc(previous)
        if previous is not None and now <= previous:
            return previous + _MIN_TICK
        return now

    def _find_lead(self, workspace_id: str, linkedin_url: str) -> Optional[SignalLead]:
        return self._session.scalar(
            select(SignalLead).where(
                SignalLead.workspace_id == workspace_id,
                SignalLead.linkedin_url == linkedin_url,
            )
        )

    def _apply_snapshot(self, lead: SignalLead, profile: HarvestProfile, workspace_id: str) -> None:
        first_name, last_name = profile.first_name, profile.last_name
        if not first_name and not last_name:
            first_name, last_name = split_name(profile.full_name)

        lead.first_name = first_name or lead.first_name
        lead.last_name = last_name or lead.last_name
        lead.headline = profile.headline
        lead.job_title = extract_job_title(profile)
        lead.company = extract_company(profile)
        lead.country = profile.country_code
        lead.profile_json = profile.model_dump_json(exclude={"raw"})

        filters = self._filters_provider(workspace_id)
        lead.icp_score = compute_icp_score(profile, filters)
        lead.icp_match = matches_icp(profile, filters)
        if lead.status in _RESCORED_STATUSES:
            lead.status = "qualified" if lead.icp_match else "excluded"

    def upsert_lead(
        self,
        workspace_id: str,
        profile: HarvestProfile,
        monitor_id: Optional[str] = None,
    ) -> SignalLead:
        """Create or refresh the workspace's lead for ``profile`` and re-score it.

        Scoring always uses the filters current at call time, so repeated
        sightings pick up ICP changes.
        """

        linkedin_url = normalize_linkedin_url(profile.linkedin_url)
        if linkedin_url is None:
            raise MalformedProfileError("profile has no usable LinkedIn URL")

        with self._key_locks.hold((workspace_id, linkedin_url)):
            try:
                lead = self._upsert_locked(workspace_id, linkedin_url, profile)
            except IntegrityError:
                # Another writer inserted the same lead between lookup and flush.
                self._session.rollback()
                logger.info("signal_lead_insert_race", workspace_id=workspace_id, linkedin_url=linkedin_url)
                try:
                    lead = self._upsert_locked(workspace_id, linkedin_url, profile)
                except SQLAlchemyError as exc:
                    self._session.rollback()
                    raise PersistenceError("lead upsert failed after retry", linkedin_url=linkedin_url) from exc
            except SQLAlchemyError as exc:
                self._session.rollback()
                raise PersistenceError("lead upsert failed", linkedin_url=linkedin_url) from exc

        logger.debug(
            "signal_lead_upserted",
            workspace_id=workspace_id,
            monitor_id=monitor_id,
            linkedin_url=linkedin_url,
        )
        return lead

    def _upsert_locked(self, workspace_id: str, linkedin_url: str, profile: HarvestProfile) -> SignalLead:
        lead = self._find_lead(workspace_id, linkedin_url)
        if lead is None:
            now = self._now_after(None)
            lead = SignalLead(
                workspace_id=workspace_id,
                linkedin_url=linkedin_url,
                status="new",
                first_seen_at=now,
                last_seen_at=now,
                signal_count=0,
                compound_score=0,
                pushed_to_outbound=False,
            )
            self._apply_snapshot(lead, profile, workspace_id)
            self._session.add(lead)
        else:
            merged = _merge_profiles(_stored_profile(lead), profile)
            lead.last_seen_at = self._now_after(lead.last_seen_at)
            lead.updated_at = lead.last_seen_at
            self._apply_snapshot(lead, merged, workspace_id)

        self._session.commit()
        return lead

    def apply_enrichment(self, lead: SignalLead, profile: HarvestProfile) -> SignalLead:
        """Merge a full profile fetch into ``lead`` and settle its qualification.

        Not a sighting: ``last_seen_at`` is left alone.
        """

        merged = _merge_profiles(_stored_profile(lead), profile.model_copy(update={"linkedin_url": None}))
        now = _as_utc(self._clock())
        try:
            self._apply_snapshot(lead, merged, lead.workspace_id)
            lead.status = "qualified" if lead.icp_match else "excluded"
            lead.enriched_at = now
            lead.updated_at = now
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise PersistenceError("lead enrichment failed", linkedin_url=lead.linkedin_url) from exc
        return lead

    def record_event(
        self,
        workspace_id: str,
        lead_id: str,
        *,
        signal_type: str,
        monitor_id: Optional[str] = None,
        monitor_kind: Optional[str] = None,
        sentiment: Optional[str] = None,
        source_url: Optional[str] = None,
        keyword_matched: Optional[str] = None,
        snippet: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> SignalEvent:
        """Append one engagement occurrence; a repeat of the same occurrence returns the stored row."""

        if signal_type not in SIGNAL_TYPES:
            raise ValueError(f"unknown signal_type: {signal_type}")
        if sentiment is not None and sentiment not in SENTIMENTS:
            raise ValueError(f"unknown sentiment: {sentiment}")
        if monitor_kind is not None and monitor_kind not in MONITOR_KINDS:
            raise ValueError(f"unknown monitor_kind: {monitor_kind}")

        # Occurrences without a source URL are always appended.
        statement = None
        if source_url is not None:
            statement = select(SignalEvent).where(
                SignalEvent.workspace_id == workspace_id,
                SignalEvent.lead_id == lead_id,
                SignalEvent.signal_type == signal_type,
                SignalEvent.source_url == source_url,
            )

        try:
            existing = self._session.scalar(statement) if statement is not None else None
            if existing is not None:
                return existing

            event = SignalEvent(
                workspace_id=workspace_id,
                lead_id=lead_id,
                monitor_id=monitor_id,
                monitor_kind=monitor_kind,
                signal_type=signal_type,
                sentiment=sentiment,
                source_url=source_url,
                keyword_matched=keyword_matched,
                snippet=snippet,
                occurred_at=occurred_at or self._clock(),
            )
            self._session.add(event)
            self._session.flush()

            lead = self._session.get(SignalLead, lead_id)
            if lead is not None:
                self.refresh_lead_scores(lead)
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            existing = self._session.scalar(statement) if statement is not None else None
            if existing is None:
                raise PersistenceError("signal event insert conflicted but no row was found")
            return existing
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise PersistenceError("signal event insert failed") from exc
        return event

    def refresh_lead_scores(self, lead: SignalLead) -> SignalLead:
        events = list(
            self._session.scalars(
                select(SignalEvent).where(
                    SignalEvent.workspace_id == lead.workspace_id,
                    SignalEvent.lead_id == lead.id,
                )
            ).all()
        )
        lead.signal_count = len(events)
        lead.compound_score = compound_score(events)
        lead.best_sentiment = _best_sentiment(event.sentiment for event in events)
        return lead

    def _monitor_kind(self, monitor_id: Optional[str]) -> Optional[str]:
        if monitor_id is None:
            return None
        monitor = self._session.get(SignalMonitor, monitor_id)
        return monitor.kind if monitor is not None else None

    def _classify(self, engager: Engager) -> Optional[str]:
        if engager.sentiment is not None:
            return engager.sentiment
        if engager.snippet is None:
            return None
        try:
            return self._sentiment.classify(engager.snippet)
        except Exception as exc:  # noqa: BLE001
            logger.warning("signal_sentiment_failed", error=str(exc))
            return None

    def process_engagers(
        self,
        workspace_id: str,
        monitor_id: Optional[str],
        engagers: Sequence[Engager],
        *,
        monitor_kind: Optional[str] = None,
    ) -> ProcessResult:
        """Upsert each engager's lead, then record its event; failures are per item."""

        kind = monitor_kind or self._monitor_kind(monitor_id)
        processed = 0
        matched = 0
        failed = 0
        errors: List[str] = []

        for engager in engagers:
            linkedin_url = engager.profile.linkedin_url
            try:
                lead = self.upsert_lead(workspace_id, engager.profile, monitor_id)
                self.record_event(
                    workspace_id,
                    lead.id,
                    signal_type=engager.signal_type,
                    monitor_id=monitor_id,
                    monitor_kind=kind,
                    sentiment=self._classify(engager),
                    source_url=engager.source_url,
                    keyword_matched=engager.keyword_matched,
                    snippet=engager.snippet,
                    occurred_at=engager.occurred_at,
                )
            except (SignalPipelineError, ValueError) as exc:
                self._session.rollback()
                failed += 1
                if len(errors) < _MAX_ERRORS_REPORTED:
                    errors.append(f"{linkedin_url or '<missing url>'}: {exc}")
                logger.warning(
                    "signal_engager_failed",
                    workspace_id=workspace_id,
                    monitor_id=monitor_id,
                    linkedin_url=linkedin_url,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            except Exception as exc:  # noqa: BLE001
                self._session.rollback()
                capture_exception(exc)
                failed += 1
                if len(errors) < _MAX_ERRORS_REPORTED:
                    errors.append(f"{linkedin_url or '<missing url>'}: unexpected {type(exc).__name__}")
                logger.error(
                    "signal_engager_unexpected_error",
                    workspace_id=workspace_id,
                    monitor_id=monitor_id,
                    linkedin_url=linkedin_url,
                    error=str(exc),
                )
                continue

            processed += 1
            if lead.icp_match:
                matched += 1

        record_engagers(
            workspace_id=workspace_id,
            kind=kind or "manual",
            processed=processed,
            matched=matched,
            failed=failed,
        )
        logger.info(
            "signal_engagers_processed",
            workspace_id=workspace_id,
            monitor_id=monitor_id,
            processed=processed,
            matched=matched,
            failed=failed,
        )
        return ProcessResult(processed=processed, matched=matched, failed=failed, errors=errors)


def lead_summary(lead: SignalLead) -> Dict[str, object]:
    profile = _stored_profile(lead)
    role_started_at = _as_utc(profile.current_role_started_at)
    return {
        "id": lead.id,
        "linkedin_url": lead.linkedin_url,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "job_title": lead.job_title,
        "company": lead.company,
        "country": lead.country,
        "icp_score": lead.icp_score,
        "icp_match": lead.icp_match,
        "status": lead.status,
        "signal_count": lead.signal_count,
        "compound_score": lead.compound_score,
        "best_sentiment": lead.best_sentiment,
        "pushed_to_outbound": lead.pushed_to_outbound,
        "connections_count": profile.connections_count,
        "follower_count": profile.follower_count,
        "open_to_work": profile.open_to_work,
        "hiring": profile.hiring,
        "current_role_started_at": role_started_at.isoformat() if role_started_at else None,
        "first_seen_at": _as_utc(lead.first_seen_at).isoformat() if lead.first_seen_at else None,
        "last_seen_at": _as_utc(lead.last_seen_at).isoformat() if lead.last_seen_at else None,
    }
