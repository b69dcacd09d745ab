"""WHEP signaling: offer/answer negotiation and resource teardown over HTTP."""

from typing import Optional, Tuple

import httpx
import structlog

from . import __version__
from .errors import SdpError, ServerError, UrlError
from .sdp import SessionDescription

logger = structlog.get_logger(__name__)

SDP_CONTENT_TYPE = "application/sdp"
USER_AGENT = f"whep-bench/{__version__}"


def parse_target_url(url: str) -> httpx.URL:
    """
    Validate the WHEP endpoint URL.

    Raises:
        UrlError: if the URL is not an absolute http(s) URL.
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise UrlError(f"invalid target URL {url!r}: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise UrlError(f"target URL must be absolute http(s), got {url!r}")
    return parsed


def resolve_location(target: httpx.URL, location: str) -> str:
    """
    Turn a ``Location`` header into the teardown URL.

    A path starting with ``/`` is joined to the target's scheme, host and
    port; anything else is used verbatim.
    """
    if location.startswith("/"):
        origin = f"{target.scheme}://{target.netloc.decode('ascii')}"
        return origin + location
    return location


class SignalingClient:
    """
    HTTP side of one WHEP session.

    Usage:
        client = SignalingClient("http://host:8080/whep", "secret")
        answer, location = await client.negotiate(offer_sdp)
        ...
        await client.teardown(location)
        await client.close()
    """

    def __init__(
        self,
        url: str,
        token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.url = url
        self.token = token
        self._target = parse_target_url(url)
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
        )

    async def negotiate(self, offer: str) -> Tuple[SessionDescription, str]:
        """
        POST the offer and return the parsed answer and resolved resource URL.

        Raises:
            ServerError: request failed, non-2xx status, or no Location header.
            SdpError: the response body is not a valid session description.
        """
        headers = {
            "Content-Type": SDP_CONTENT_TYPE,
            "Accept": SDP_CONTENT_TYPE,
            "Authorization": f"Bearer {self.token}",
            "User-Agent": USER_AGENT,
        }

        try:
            response = await self._http_client.post(self.url, content=offer, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ServerError(
                f"negotiation rejected: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ServerError(f"negotiation request failed: {e}") from e

        body = response.text
        logger.debug("WHEP answer received", status=response.status_code, answer=body)

        try:
            answer = SessionDescription.parse(body)
        except SdpError as e:
            raise SdpError(f"invalid answer: {e}") from e

        location = response.headers.get("location")
        if not location:
            raise ServerError("Location header not found")

        return answer, resolve_location(self._target, location)

    async def teardown(self, location: str):
        """
        DELETE the session resource. Best effort, no retry.

        Raises:
            ServerError: if the request fails or the server rejects it.
        """
        try:
            response = await self._http_client.delete(
                location,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "User-Agent": USER_AGENT,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ServerError(f"teardown rejected: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ServerError(f"teardown request failed: {e}") from e
        except httpx.InvalidURL as e:
            raise ServerError(f"teardown location is not a valid URL: {e}") from e

    async def close(self):
        if self._owns_client:
            await self._http_client.aclose()
