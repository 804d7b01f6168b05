"""Shared httpx client construction and JSON fetching for upstream sources."""

import httpx

from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; MetalsPriceService/1.0)"


def create_http_client(timeout_seconds: float = 5.0) -> httpx.AsyncClient:
    """Shared client for every upstream call; pooled and time-bounded."""
    return httpx.AsyncClient(
        timeout=timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=30),
    )


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    source: str,
    params: dict | None = None,
    headers: dict | None = None,
) -> dict:
    """GET a JSON object, mapping every transport/HTTP/decode failure to UpstreamUnavailable."""
    try:
        response = await client.get(url, params=params, headers=headers)
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException as e:
        raise UpstreamUnavailable(f"{source}: timed out") from e
    except httpx.HTTPStatusError as e:
        raise UpstreamUnavailable(
            f"{source}: HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamUnavailable(f"{source}: {e}") from e
    except ValueError as e:
        raise UpstreamUnavailable(f"{source}: invalid JSON") from e

    if not isinstance(data, dict):
        raise UpstreamUnavailable(f"{source}: unexpected payload type")
    return data
