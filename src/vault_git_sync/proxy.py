"""
Credential-forwarding CORS proxy for Git smart-HTTP requests.

``ANY /proxy?url=<upstream url>`` relays the request to the upstream URL,
turning the ``X-Git-Username``/``X-Git-Password`` headers into a Basic
Authorization header, and streams the upstream response back unchanged.
It is a single stateless hop for clients that cannot make authenticated
cross-origin requests themselves, not a general-purpose proxy.
"""

from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from .log import mask_secrets, safe_headers
from .transport import PASSWORD_HEADER, USERNAME_HEADER

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001
DEFAULT_TIMEOUT = 60.0

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = [
    USERNAME_HEADER,
    PASSWORD_HEADER,
    "X-Requested-With",
    "Content-Type",
    "Authorization",
    "Git-Protocol",
]

# Never forwarded in either direction.
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
}
_DROPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {
    "host",
    "origin",
    "referer",
    USERNAME_HEADER.lower(),
    PASSWORD_HEADER.lower(),
}


class InvalidTargetError(ValueError):
    """The ``url`` query parameter is missing or not an absolute http(s) URL."""


def build_target_url(query_string: str) -> str:
    """Upstream URL named by the ``url`` parameter of a proxy query string.

    Other query parameters are appended to the target query; Git adds
    ``service=...`` that way when the remote URL already has a query.
    """
    params = parse_qsl(query_string, keep_blank_values=True)
    target = next((value for key, value in params if key == "url"), None)
    if not target:
        raise InvalidTargetError("Missing 'url' query parameter")

    parts = urlsplit(target)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidTargetError(f"Invalid target URL: {mask_secrets(target)}")

    extra = [(key, value) for key, value in params if key != "url"]
    target_query = parts.query
    if extra:
        target_query = "&".join(filter(None, [target_query, urlencode(extra)]))
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", target_query, ""))


def basic_auth_header(username: str, secret: str) -> str:
    token = base64.b64encode(f"{username}:{secret}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def build_upstream_headers(headers: httpx.Headers | dict) -> dict[str, str]:
    """Forwarded request headers, with Basic auth synthesized from the credential headers."""
    incoming = httpx.Headers(headers)
    outgoing = {
        key: value
        for key, value in incoming.items()
        if key.lower() not in _DROPPED_REQUEST_HEADERS
    }

    username = incoming.get(USERNAME_HEADER)
    secret = incoming.get(PASSWORD_HEADER)
    if username and secret:
        outgoing["Authorization"] = basic_auth_header(username, secret)
        logger.debug("Added Basic Auth header")
    else:
        logger.debug("No authentication credentials provided")
    return outgoing


def _response_headers(headers: httpx.Headers) -> dict[str, str]:
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


def create_app(
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> FastAPI:
    """Build the proxy application.

    Args:
        client: Upstream HTTP client; one is created for the app lifetime if omitted
        timeout: Upstream timeout in seconds for a created client
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = client is None
        app.state.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)
        logger.info("Git proxy ready")
        yield
        if owned:
            await app.state.client.aclose()

    app = FastAPI(title="vault-git-sync proxy", lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.client = client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=PROXY_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=[
            "Access-Control-Allow-Origin",
            "Access-Control-Allow-Methods",
            "Access-Control-Allow-Headers",
        ],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.api_route("/proxy", methods=PROXY_METHODS)
    async def proxy(request: Request) -> Response:
        try:
            target = build_target_url(request.url.query)
        except InvalidTargetError as e:
            logger.warning(f"Rejected proxy request: {e}")
            return PlainTextResponse(str(e), status_code=400)

        headers = build_upstream_headers(request.headers)
        logger.info(f"Proxying {request.method} request to: {mask_secrets(target)}")
        logger.debug(f"Request headers: {safe_headers(headers)}")

        http: httpx.AsyncClient = request.app.state.client
        if http is None:
            http = httpx.AsyncClient(timeout=timeout)
            request.app.state.client = http

        upstream_request = http.build_request(
            request.method,
            target,
            headers=headers,
            content=(await request.body()) or None,
        )
        try:
            upstream = await http.send(upstream_request, stream=True)
        except httpx.ConnectError as e:
            logger.error(f"Proxy error: cannot connect to {mask_secrets(target)}: {e}")
            return PlainTextResponse(f"Proxy error: cannot connect to upstream: {e}", status_code=502)
        except httpx.TimeoutException as e:
            logger.error(f"Proxy error: upstream timed out: {e}")
            return PlainTextResponse(f"Proxy error: upstream timed out: {e}", status_code=504)
        except httpx.HTTPError as e:
            logger.error(f"Proxy error: {e}")
            return PlainTextResponse(f"Proxy error: {e}", status_code=502)

        logger.info(f"Received response: {upstream.status_code} {upstream.reason_phrase}")
        cleanup = BackgroundTasks()
        cleanup.add_task(upstream.aclose)
        return StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            headers=_response_headers(upstream.headers),
            background=cleanup,
        )

    return app
