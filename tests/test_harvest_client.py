from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx
import pytest

from magnetlab_signals.integrations.harvest import HarvestClient, HarvestClientError
from magnetlab_signals.signals.contracts import HarvestProfile
from magnetlab_signals.signals.errors import TransientNetworkError


class _FakeHttpClient:
    def __init__(self, responses: List[Any]) -> None:
        self._responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, *, headers: Dict[str, str], params: Dict[str, str]):
        self.calls.append({"url": url, "headers": headers, "params": params})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses: List[Any]) -> tuple[HarvestClient, _FakeHttpClient]:
    fake = _FakeHttpClient(responses)
    return HarvestClient(api_key="harvest-key", base_url="https://harvest.test/", client=fake), fake


def test_keyword_search_sends_query_and_truncates_posts() -> None:
    client, fake = _client(
        [
            httpx.Response(
                200,
                json={
                    "elements": [
                        {
                            "id": "p1",
                            "linkedinUrl": "https://www.linkedin.com/posts/p1",
                            "content": "We are hiring SDRs",
                            "author": {"name": "Alpha Corp", "linkedinUrl": "https://www.linkedin.com/company/alpha"},
                            "postedAt": {"timestamp": 1792310400000},
                        },
                        {"id": "p2", "linkedinUrl": "https://www.linkedin.com/posts/p2"},
                        {"id": "p3", "linkedinUrl": "https://www.linkedin.com/posts/p3"},
                        "not-a-post",
                    ]
                },
            )
        ]
    )

    posts = client.search_posts_by_keyword("hiring", posted_limit="24h", limit=2)

    assert [post.post_id for post in posts] == ["p1", "p2"]
    assert posts[0].author_name == "Alpha Corp"
    assert posts[0].posted_at is not None
    call = fake.calls[0]
    assert call["url"] == "https://harvest.test/linkedin/post-search"
    assert call["headers"]["X-API-Key"] == "harvest-key"
    assert call["params"] == {"search": "hiring", "postedLimit": "24h", "sortBy": "date"}


def test_company_and_profile_posts_use_their_endpoints() -> None:
    client, fake = _client([httpx.Response(200, json={"elements": []}), httpx.Response(200, json={"elements": []})])

    assert client.search_posts_by_company("https://www.linkedin.com/company/alpha", posted_limit="week") == []
    assert client.search_posts_by_profile("https://www.linkedin.com/in/ada") == []

    assert fake.calls[0]["url"].endswith("/linkedin/company-posts")
    assert fake.calls[0]["params"]["company"] == "https://www.linkedin.com/company/alpha"
    assert fake.calls[1]["url"].endswith("/linkedin/profile-posts")
    assert fake.calls[1]["params"] == {"profile": "https://www.linkedin.com/in/ada", "postedLimit": "week"}


def test_comments_and_reactions_parse_actors() -> None:
    client, _ = _client(
        [
            httpx.Response(
                200,
                json={
                    "elements": [
                        {
                            "actor": {
                                "name": "Ada Lovelace",
                                "position": "Founder at Alpha",
                                "linkedinUrl": "https://www.linkedin.com/in/ada",
                            },
                            "commentary": "Count me in",
                            "createdAt": "2026-10-18T09:30:00Z",
                        }
                    ]
                },
            ),
            httpx.Response(
                200,
                json={"elements": [{"actor": {"name": "Bob Stone", "linkedinUrl": "https://www.linkedin.com/in/bob"}}]},
            ),
        ]
    )

    comments = client.get_post_comments("https://www.linkedin.com/posts/p1")
    reactions = client.get_post_reactions("https://www.linkedin.com/posts/p1")

    assert comments[0].profile.full_name == "Ada Lovelace"
    assert comments[0].profile.headline == "Founder at Alpha"
    assert comments[0].text == "Count me in"
    assert comments[0].occurred_at is not None
    assert reactions[0].profile.linkedin_url == "https://www.linkedin.com/in/bob"
    assert reactions[0].text is None


def test_get_profile_falls_back_to_requested_url() -> None:
    client, fake = _client(
        [
            httpx.Response(
                200,
                json={
                    "element": {
                        "firstName": "Ada",
                        "lastName": "Lovelace",
                        "headline": "Founder at Alpha",
                        "location": {"countryCode": "gb"},
                    }
                },
            )
        ]
    )

    profile = client.get_profile("https://www.linkedin.com/in/ada")

    assert profile.full_name == "Ada Lovelace"
    assert profile.country_code == "GB"
    assert profile.linkedin_url == "https://www.linkedin.com/in/ada"
    assert fake.calls[0]["params"] == {"url": "https://www.linkedin.com/in/ada"}


def test_get_profile_parses_reach_and_role_signals() -> None:
    client, _ = _client(
        [
            httpx.Response(
                200,
                json={
                    "element": {
                        "firstName": "Jane",
                        "lastName": "Doe",
                        "headline": "VP Sales at Acme Corp",
                        "linkedinUrl": "https://www.linkedin.com/in/janedoe",
                        "connectionsCount": 800,
                        "followerCount": "2,000",
                        "openToWork": False,
                        "hiring": True,
                        "experience": [
                            {"companyName": "Acme Corp", "position": "VP Sales", "startDate": "2026-09-19"},
                            {"companyName": "Globex", "position": "Sales Director", "endDate": "2026-08-31"},
                        ],
                    }
                },
            )
        ]
    )

    profile = client.get_profile("https://www.linkedin.com/in/janedoe")

    assert profile.connections_count == 800
    assert profile.follower_count == 2000
    assert profile.open_to_work is False
    assert profile.hiring is True
    assert profile.current_role_started_at == datetime(2026, 9, 19, tzinfo=timezone.utc)
    assert profile.current_title == "VP Sales"


def test_profile_signals_tolerate_odd_shapes() -> None:
    profile = HarvestProfile.from_payload(
        {
            "connectionsCount": "500+",
            "followerCount": -3,
            "openToWork": "yes",
            "experience": [{"startDate": {"month": "Sep", "year": 2025, "text": "Sep 2025"}}],
        }
    )
    assert profile.connections_count == 500
    assert profile.follower_count is None
    assert profile.open_to_work is None
    assert profile.hiring is None
    assert profile.current_role_started_at == datetime(2025, 9, 1, tzinfo=timezone.utc)

    actor = HarvestProfile.from_payload({"name": "Ada", "position": "Founder at Alpha", "experience": "n/a"})
    assert actor.current_role_started_at is None
    assert actor.connections_count is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429, text="slow down"),
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, json={"error": "quota exceeded"}),
        httpx.ConnectError("connection refused"),
    ],
)
def test_failures_raise_transient_errors(response) -> None:
    client, _ = _client([response])
    with pytest.raises(TransientNetworkError):
        client.search_posts_by_keyword("hiring")


def test_http_errors_carry_status_code() -> None:
    client, _ = _client([httpx.Response(403, text="forbidden")])
    with pytest.raises(HarvestClientError) as exc_info:
        client.get_post_comments("https://www.linkedin.com/posts/p1")
    assert exc_info.value.status_code == 403


def test_missing_api_key_is_rejected_before_any_request() -> None:
    fake = _FakeHttpClient([])
    client = HarvestClient(api_key=" ", client=fake)
    with pytest.raises(HarvestClientError):
        client.search_posts_by_keyword("hiring")
    assert fake.calls == []
