from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from app.errors import UpstreamVenueError


DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Accept-Encoding": "gzip",
    "User-Agent": "forecastsync/0.1",
}


def build_http_client(
    *,
    base_url: str = "",
    timeout: float = 30.0,
    proxy: str | None = None,
    headers: dict[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Shared httpx client factory; gzip decoding is handled by httpx."""

    merged_headers = dict(DEFAULT_HEADERS)
    if headers:
        merged_headers.update(headers)
    kwargs: dict[str, Any] = {
        "base_url": base_url.rstrip("/"),
        "timeout": timeout,
        "headers": merged_headers,
    }
    if transport is not None:
        kwargs["transport"] = transport
    elif proxy:
        kwargs["proxy"] = proxy
        logger.info("Routing requests for {} through proxy", base_url or "<no base>")
    return httpx.Client(**kwargs)


def get_json(client: httpx.Client, path: str, *, params: dict[str, Any] | None = None, venue: str) -> Any:
    """GET ``path`` and decode JSON, mapping transport and status failures to venue errors."""

    try:
        response = client.get(path, params=params)
    except httpx.HTTPError as exc:
        raise UpstreamVenueError(f"{venue} GET {path} failed: {exc}") from exc
    if response.status_code != httpx.codes.OK:
        raise UpstreamVenueError(
            f"{venue} GET {path} returned an error",
            status_code=response.status_code,
            body=response.text[:512],
        )
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamVenueError(f"{venue} GET {path} returned invalid JSON: {exc}") from exc
