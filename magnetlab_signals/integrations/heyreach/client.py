"""HeyReach client for adding qualified leads to outbound campaigns."""

from __future__ import annotations

from functools import lru_cache
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from magnetlab_signals.core.config import get_settings
from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.signals.contracts import OutboundLead, PushOutcome
from magnetlab_signals.signals.errors import TransientNetworkError


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

logger = get_logger("magnetlab.integrations.heyreach")


class HeyReachClientError(TransientNetworkError):
    """Raised when a push cannot be delivered after retries.

    ``outcomes`` carries the results of chunks that completed before the failure.
    """

    def __init__(self, message: str, *, outcomes: Optional[List[PushOutcome]] = None) -> None:
        super().__init__(message)
        self.outcomes = list(outcomes or [])


class _ChunkRejected(Exception):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class _RetryableFailure(Exception):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome is not None else None
    logger.warning(
        "heyreach_request_retryable",
        attempt=retry_state.attempt_number,
        error=str(error) if error is not None else None,
    )


def _profile_url(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"


def _campaign_ref(campaign_id: str) -> Any:
    stripped = str(campaign_id).strip()
    return int(stripped) if stripped.isdigit() else stripped


class HeyReachClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.heyreach.io/api/public",
        timeout_seconds: int = 30,
        max_retries: int = 3,
        retry_base_delay_seconds: float = 1.0,
        chunk_size: int = 25,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._max_retries = max(0, max_retries)
        self._retry_base_delay_seconds = max(0.0, retry_base_delay_seconds)
        self._chunk_size = max(1, chunk_size)
        self._client = client
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise HeyReachClientError("heyreach_api_key_missing")
        return {"X-API-KEY": self._api_key, "Content-Type": "application/json", "Accept": "application/json"}

    @staticmethod
    def build_lead_payload(lead: OutboundLead) -> Dict[str, Any]:
        custom_fields: List[Dict[str, str]] = []
        if lead.job_title:
            custom_fields.append({"name": "job_title", "value": lead.job_title})
        custom_fields.append({"name": "icp_score", "value": str(lead.icp_score)})
        custom_fields.append({"name": "signal_score", "value": str(lead.compound_score)})
        return {
            "profileUrl": _profile_url(lead.linkedin_url),
            "firstName": lead.first_name or "",
            "lastName": lead.last_name or "",
            "companyName": lead.company or "",
            "customUserFields": custom_fields,
        }

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = self._headers()
        if self._client is not None:
            return self._client.post(url, headers=headers, json=payload)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.post(url, headers=headers, json=payload)

    def _attempt(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = self._post(url, payload)
        except httpx.HTTPError as exc:
            raise _RetryableFailure(f"transport error: {exc.__class__.__name__}") from exc

        if 200 <= response.status_code < 300:
            return

        detail = response.text.strip()
        if len(detail) > 200:
            detail = detail[:200] + "..."
        message = f"HTTP {response.status_code}: {detail}"
        if response.status_code not in RETRYABLE_STATUS_CODES:
            raise _ChunkRejected(message)
        raise _RetryableFailure(message)

    def _send_chunk(self, campaign_id: str, chunk: Sequence[OutboundLead]) -> None:
        url = f"{self._base_url}/campaign/AddLeadsToCampaign"
        payload = {
            "campaignId": _campaign_ref(campaign_id),
            "accountLeadPairs": [
                {"linkedInAccountId": None, "lead": self.build_lead_payload(lead)} for lead in chunk
            ],
        }

        attempts = self._max_retries + 1
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self._retry_base_delay_seconds),
            retry=retry_if_exception_type(_RetryableFailure),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            retrying(self._attempt, url, payload)
        except _RetryableFailure as exc:
            raise HeyReachClientError(f"heyreach push failed after {attempts} attempts: {exc.detail}") from exc

    def push_leads(self, campaign_id: str, leads: Sequence[OutboundLead]) -> List[PushOutcome]:
        """Add leads to a campaign chunk by chunk; one outcome per lead.

        A chunk rejected by HeyReach yields rejected outcomes for its leads and
        the push continues. Exhausted retries raise ``HeyReachClientError`` with
        the outcomes gathered so far.
        """

        if not str(campaign_id).strip():
            raise HeyReachClientError("heyreach_campaign_id_missing")

        outcomes: List[PushOutcome] = []
        for start in range(0, len(leads), self._chunk_size):
            chunk = leads[start : start + self._chunk_size]
            try:
                self._send_chunk(campaign_id, chunk)
            except _ChunkRejected as exc:
                outcomes.extend(PushOutcome(lead_id=lead.lead_id, accepted=False, error=exc.detail) for lead in chunk)
                continue
            except HeyReachClientError as exc:
                raise HeyReachClientError(str(exc), outcomes=outcomes) from exc
            outcomes.extend(PushOutcome(lead_id=lead.lead_id, accepted=True) for lead in chunk)
        return outcomes


@lru_cache(maxsize=1)
def get_heyreach_client() -> HeyReachClient:
    settings = get_settings()
    return HeyReachClient(
        api_key=settings.heyreach_api_key,
        base_url=settings.heyreach_api_base_url,
        timeout_seconds=settings.heyreach_timeout_seconds,
        max_retries=settings.heyreach_max_retries,
        retry_base_delay_seconds=settings.heyreach_retry_base_delay_seconds,
        chunk_size=settings.heyreach_chunk_size,
    )
