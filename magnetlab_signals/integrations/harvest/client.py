"""HTTP client for the Harvest LinkedIn scraping API."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional

import httpx

from magnetlab_signals.core.config import get_settings
from magnetlab_signals.signals.contracts import HarvestEngagement, HarvestPost, HarvestProfile
from magnetlab_signals.signals.errors import TransientNetworkError


class HarvestClientError(TransientNetworkError):
    """Raised when a Harvest API request fails or returns an unusable body."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HarvestClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.harvest-api.com",
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise HarvestClientError("harvest_api_key_missing")
        return {"X-API-Key": self._api_key, "Accept": "application/json"}

    def _safe_json(self, response: httpx.Response, *, context: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise HarvestClientError(f"{context} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise HarvestClientError(f"{context} returned invalid payload format")
        return payload

    def _get(self, path: str, params: Mapping[str, Any], *, context: str) -> Dict[str, Any]:
        query = {key: str(value) for key, value in params.items() if value not in (None, "")}
        url = f"{self._base_url}{path}"
        headers = self._headers()
        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers, params=query)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.get(url, headers=headers, params=query)
        except httpx.HTTPError as exc:
            raise HarvestClientError(f"{context} request failed") from exc

        if response.status_code >= 400:
            detail = response.text.strip()
            if len(detail) > 200:
                detail = detail[:200] + "..."
            raise HarvestClientError(
                f"{context} failed with status {response.status_code} detail={detail}",
                status_code=response.status_code,
            )
        return self._safe_json(response, context=context)

    def _elements(self, path: str, params: Mapping[str, Any], *, context: str) -> List[Dict[str, Any]]:
        payload = self._get(path, params, context=context)
        if payload.get("error"):
            raise HarvestClientError(f"{context} returned error: {payload['error']}")
        elements = payload.get("elements") or []
        if not isinstance(elements, list):
            raise HarvestClientError(f"{context} returned invalid elements")
        return [element for element in elements if isinstance(element, dict)]

    def _posts(self, path: str, params: Mapping[str, Any], *, context: str, limit: int) -> List[HarvestPost]:
        posts = [HarvestPost.from_payload(item) for item in self._elements(path, params, context=context)]
        return posts[: max(0, limit)]

    def search_posts_by_keyword(self, keyword: str, *, posted_limit: str = "24h", limit: int = 10) -> List[HarvestPost]:
        return self._posts(
            "/linkedin/post-search",
            {"search": keyword, "postedLimit": posted_limit, "sortBy": "date"},
            context="Harvest post search",
            limit=limit,
        )

    def search_posts_by_company(self, company_url: str, *, posted_limit: str = "24h", limit: int = 5) -> List[HarvestPost]:
        return self._posts(
            "/linkedin/company-posts",
            {"company": company_url, "postedLimit": posted_limit},
            context="Harvest company posts",
            limit=limit,
        )

    def search_posts_by_profile(self, profile_url: str, *, posted_limit: str = "week", limit: int = 10) -> List[HarvestPost]:
        return self._posts(
            "/linkedin/profile-posts",
            {"profile": profile_url, "postedLimit": posted_limit},
            context="Harvest profile posts",
            limit=limit,
        )

    def get_post_comments(self, post_url: str) -> List[HarvestEngagement]:
        elements = self._elements("/linkedin/post-comments", {"post": post_url}, context="Harvest post comments")
        return [HarvestEngagement.from_payload(item) for item in elements]

    def get_post_reactions(self, post_url: str) -> List[HarvestEngagement]:
        elements = self._elements("/linkedin/post-reactions", {"post": post_url}, context="Harvest post reactions")
        return [HarvestEngagement.from_payload(item) for item in elements]

    def get_profile(self, profile_url: str) -> HarvestProfile:
        payload = self._get("/linkedin/profile", {"url": profile_url}, context="Harvest profile")
        if payload.get("error"):
            raise HarvestClientError(f"Harvest profile returned error: {payload['error']}")
        element = payload.get("element", payload)
        profile = HarvestProfile.from_payload(element)
        if profile.linkedin_url is None:
            profile = profile.model_copy(update={"linkedin_url": profile_url})
        return profile


@lru_cache(maxsize=1)
def get_harvest_client() -> HarvestClient:
    settings = get_settings()
    return HarvestClient(
        api_key=settings.harvest_api_key,
        base_url=settings.harvest_api_base_url,
        timeout_seconds=settings.harvest_api_timeout_seconds,
    )
