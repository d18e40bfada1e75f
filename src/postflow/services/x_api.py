"""Minimal async client for the X (Twitter) API v2.

Covers the OAuth 2.0 PKCE user flow, the authenticated user lookup, media
upload and post creation. Everything else the platform offers is out of
reach on purpose.
"""

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from postflow.config import (
    X_API_BASE_URL,
    X_AUTHORIZE_URL,
    X_CALLBACK_URL,
    X_CLIENT_ID,
    X_CLIENT_SECRET,
    X_SCOPES,
)
from postflow.models.content import AuthSession, PublishReceipt, XProfile

logger = logging.getLogger(__name__)


class XApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthorizationLink:
    url: str
    state: str
    code_verifier: str


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        detail = body.get("detail") or body.get("error_description") or body.get("title") or body
    except ValueError:
        detail = response.text
    raise XApiError(f"Failed to {action} ({response.status_code}): {detail}", response.status_code)


class XClient:
    def __init__(
        self,
        client_id: str = X_CLIENT_ID,
        client_secret: str = X_CLIENT_SECRET,
        callback_url: str = X_CALLBACK_URL,
        base_url: str = X_API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self._http = httpx.AsyncClient(base_url=base_url, timeout=30.0, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "XClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # --- OAuth 2.0 (PKCE) ---

    def authorization_link(self) -> AuthorizationLink:
        if not self.client_id:
            raise ValueError("X_CLIENT_ID is not set. Add it to your .env file.")

        state = secrets.token_urlsafe(24)
        verifier = secrets.token_urlsafe(64)
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "scope": " ".join(X_SCOPES),
            "state": state,
            "code_challenge": _code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthorizationLink(
            url=f"{X_AUTHORIZE_URL}?{urlencode(params)}",
            state=state,
            code_verifier=verifier,
        )

    async def exchange_code(self, code: str, code_verifier: str) -> dict:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.callback_url,
            "code_verifier": code_verifier,
            "client_id": self.client_id,
        }
        auth = (self.client_id, self.client_secret) if self.client_secret else None

        response = await self._http.post("/2/oauth2/token", data=data, auth=auth)
        _raise_for_status(response, "exchange authorization code")
        return response.json()

    async def me(self, access_token: str) -> XProfile:
        response = await self._http.get(
            "/2/users/me",
            headers=_bearer(access_token),
        )
        _raise_for_status(response, "fetch user profile")
        data = response.json()["data"]
        return XProfile(id=data["id"], name=data.get("name", ""), username=data.get("username", ""))

    async def login(self, code: str, code_verifier: str) -> AuthSession:
        tokens = await self.exchange_code(code, code_verifier)
        profile = await self.me(tokens["access_token"])
        logger.info("Authenticated with X as @%s", profile.username)
        return AuthSession(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=tokens.get("expires_in"),
            profile=profile,
        )

    # --- Publishing ---

    async def upload_media(self, access_token: str, image_base64: str) -> str:
        response = await self._http.post(
            "/2/media/upload",
            headers=_bearer(access_token),
            files={"media": ("image.png", base64.b64decode(image_base64), "image/png")},
            data={"media_category": "tweet_image"},
        )
        _raise_for_status(response, "upload media")
        return response.json()["data"]["id"]

    async def create_post(self, access_token: str, text: str, media_ids: list[str] | None = None) -> PublishReceipt:
        payload: dict = {"text": text}
        if media_ids:
            payload["media"] = {"media_ids": media_ids}

        response = await self._http.post("/2/tweets", headers=_bearer(access_token), json=payload)
        _raise_for_status(response, "post tweet")

        post_id = response.json()["data"]["id"]
        return PublishReceipt(
            external_id=post_id,
            url=f"https://twitter.com/i/web/status/{post_id}",
        )


def _bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}
