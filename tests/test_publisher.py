import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from postflow.agents.publisher import authenticate, publish_post
from postflow.graph.errors import AuthenticationError, AuthenticationTimeout, PublishError
from postflow.graph.registry import StageRegistry
from postflow.graph.workflow import Sequencer
from postflow.models.content import AuthSession, XProfile
from postflow.models.workflow import EngineSettings
from postflow.services.x_api import XApiError, XClient


def _x_api(requests, post_status=201):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path == "/2/oauth2/token":
            return httpx.Response(200, json={"access_token": "access", "refresh_token": "refresh", "expires_in": 7200})
        if path == "/2/users/me":
            return httpx.Response(200, json={"data": {"id": "42", "name": "Ada", "username": "ada"}})
        if path == "/2/media/upload":
            return httpx.Response(200, json={"data": {"id": "m1"}})
        if path == "/2/tweets":
            if post_status >= 400:
                return httpx.Response(post_status, json={"title": "Forbidden", "detail": "duplicate content"})
            return httpx.Response(post_status, json={"data": {"id": "999", "text": "hi"}})
        return httpx.Response(404)

    return XClient(client_id="cid", client_secret="", callback_url="http://localhost:8765/callback",
                   transport=httpx.MockTransport(handler))


class FakePrompt:
    def __init__(self, params=None, delay=0.0):
        self.params = params
        self.delay = delay
        self.closed = False

    async def wait(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.params

    def close(self):
        self.closed = True


def test_authorization_link_uses_pkce():
    client = XClient(client_id="cid", callback_url="http://localhost:8765/callback")
    link = client.authorization_link()

    query = parse_qs(urlsplit(link.url).query)
    assert query["client_id"] == ["cid"]
    assert query["state"] == [link.state]
    assert query["code_challenge_method"] == ["S256"]
    assert query["code_challenge"][0] != link.code_verifier
    assert "tweet.write" in query["scope"][0]


def test_authorization_link_requires_client_id():
    with pytest.raises(ValueError):
        XClient(client_id="").authorization_link()


@pytest.mark.asyncio
async def test_authenticate_round_trip():
    requests = []
    client = _x_api(requests)
    prompt = FakePrompt()

    async def present(url):
        state = parse_qs(urlsplit(url).query)["state"][0]
        prompt.params = {"code": "abc", "state": state}
        return prompt

    session = await authenticate(present, timeout=1, client=client)

    assert session.access_token == "access"
    assert session.profile.username == "ada"
    assert prompt.closed
    token_request = requests[0]
    assert parse_qs(token_request.content.decode())["code"] == ["abc"]
    assert requests[1].headers["Authorization"] == "Bearer access"


@pytest.mark.asyncio
async def test_authenticate_times_out_and_closes_prompt():
    prompt = FakePrompt(params={"code": "late"}, delay=5)

    async def present(url):
        return prompt

    with pytest.raises(AuthenticationTimeout):
        await authenticate(present, timeout=0.01, client=_x_api([]))

    assert prompt.closed


@pytest.mark.asyncio
async def test_authenticate_rejects_state_mismatch():
    prompt = FakePrompt(params={"code": "abc", "state": "forged"})

    async def present(url):
        return prompt

    with pytest.raises(AuthenticationError, match="state"):
        await authenticate(present, timeout=1, client=_x_api([]))
    assert prompt.closed


@pytest.mark.asyncio
async def test_authenticate_reports_denied_consent():
    async def present(url):
        return FakePrompt(params={"error": "access_denied"})

    with pytest.raises(AuthenticationError, match="access_denied"):
        await authenticate(present, timeout=1, client=_x_api([]))


@pytest.mark.asyncio
async def test_publish_uploads_first_image_then_posts():
    requests = []
    receipt = await publish_post("tok", "hello", "aW1n", client=_x_api(requests))

    assert [r.url.path for r in requests] == ["/2/media/upload", "/2/tweets"]
    assert json.loads(requests[1].content) == {"text": "hello", "media": {"media_ids": ["m1"]}}
    assert receipt.external_id == "999"
    assert receipt.url == "https://twitter.com/i/web/status/999"


@pytest.mark.asyncio
async def test_publish_text_only():
    requests = []
    await publish_post("tok", "hello", None, client=_x_api(requests))
    assert [r.url.path for r in requests] == ["/2/tweets"]
    assert json.loads(requests[0].content) == {"text": "hello"}


@pytest.mark.asyncio
async def test_publish_failure_is_a_publish_error():
    with pytest.raises(PublishError, match="duplicate content"):
        await publish_post("tok", "hello", client=_x_api([], post_status=403))


@pytest.mark.asyncio
async def test_api_errors_carry_status_code():
    client = _x_api([], post_status=403)
    with pytest.raises(XApiError) as info:
        await client.create_post("tok", "hello")
    assert info.value.status_code == 403


@pytest.mark.asyncio
async def test_sequencer_authenticate_stores_token_on_publish_stage(fakes):
    seen = {}

    async def fake_authenticate(present, timeout):
        seen["timeout"] = timeout
        return AuthSession(access_token="access", profile=XProfile(id="42", username="ada"))

    bundle = fakes.bundle()
    bundle.authenticate = fake_authenticate
    registry = StageRegistry()
    sequencer = Sequencer(bundle, EngineSettings(stage_delay=0, auth_timeout=12))

    session = await sequencer.authenticate(registry, present=None)

    assert session.profile.username == "ada"
    assert seen["timeout"] == 12
    assert registry.get("publish").config["auth_token"] == "access"
    assert registry.get("publish").config["auth_profile"]["username"] == "ada"
