import asyncio
import logging
import webbrowser
from typing import Awaitable, Callable, Protocol
from urllib.parse import parse_qs, urlsplit

from postflow.config import AUTH_TIMEOUT_SECONDS
from postflow.graph.errors import AuthenticationError, AuthenticationTimeout, PublishError
from postflow.models.content import AuthSession, PublishReceipt
from postflow.services.x_api import XApiError, XClient

logger = logging.getLogger(__name__)


class AuthPrompt(Protocol):
    """An open consent page waiting for the provider to redirect back."""

    async def wait(self) -> dict[str, str]: ...

    def close(self) -> None: ...


Presenter = Callable[[str], Awaitable[AuthPrompt]]


async def authenticate(
    present: Presenter,
    timeout: float = AUTH_TIMEOUT_SECONDS,
    client: XClient | None = None,
) -> AuthSession:
    """Run the OAuth consent round-trip as one bounded call.

    ``present`` opens the authorization URL somewhere the user can complete
    it and returns a prompt whose ``wait()`` resolves with the callback query
    parameters. The prompt is always closed before returning.
    """
    owns_client = client is None
    client = client or XClient()
    try:
        link = client.authorization_link()
        prompt = await present(link.url)
        try:
            params = await asyncio.wait_for(prompt.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise AuthenticationTimeout("Authentication timeout") from e
        finally:
            prompt.close()

        if params.get("error"):
            raise AuthenticationError(f"Authentication was not completed: {params['error']}")
        if params.get("state") != link.state:
            raise AuthenticationError("Invalid or expired state parameter")
        if not params.get("code"):
            raise AuthenticationError("Missing authorization code")

        try:
            return await client.login(params["code"], link.code_verifier)
        except XApiError as e:
            raise AuthenticationError(str(e)) from e
    finally:
        if owns_client:
            await client.aclose()


async def publish_post(
    token: str,
    text: str,
    image: str | None = None,
    client: XClient | None = None,
) -> PublishReceipt:
    owns_client = client is None
    client = client or XClient()
    try:
        media_ids = None
        if image:
            media_ids = [await client.upload_media(token, image)]
        receipt = await client.create_post(token, text, media_ids)
    except XApiError as e:
        raise PublishError(f"Failed to post: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info("Published post %s", receipt.url)
    return receipt


class LoopbackPrompt:
    """Opens the consent page in the system browser and catches the redirect
    on a local one-shot HTTP listener."""

    def __init__(self, host: str, port: int, path: str):
        self.host = host
        self.port = port
        self.path = path
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()
        self._server: asyncio.AbstractServer | None = None

    @classmethod
    async def open(cls, url: str, callback_url: str) -> "LoopbackPrompt":
        parts = urlsplit(callback_url)
        prompt = cls(parts.hostname or "localhost", parts.port or 80, parts.path or "/")
        prompt._server = await asyncio.start_server(prompt._handle, prompt.host, prompt.port)
        webbrowser.open(url)
        return prompt

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        request_line = (await reader.readline()).decode("latin-1")
        target = request_line.split(" ")[1] if request_line.count(" ") >= 2 else ""
        parts = urlsplit(target)

        body = b"Authentication finished. You can close this window."
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n"
            + f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n".encode("ascii")
            + body
        )
        await writer.drain()
        writer.close()

        if parts.path == self.path and not self._result.done():
            params = {key: values[0] for key, values in parse_qs(parts.query).items()}
            self._result.set_result(params)

    async def wait(self) -> dict[str, str]:
        return await self._result

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        if not self._result.done():
            self._result.cancel()
