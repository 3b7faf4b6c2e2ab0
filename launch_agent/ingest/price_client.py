"""DexScreener token price lookups."""

import logging
from typing import Any

import httpx

from launch_agent.errors import PriceUnavailableError
from launch_agent.models.units import parse_float

logger = logging.getLogger(__name__)

DEXSCREENER_BASE_URL = "https://api.dexscreener.com"


def best_pair_price(pairs: list[dict[str, Any]]) -> float | None:
    """USD price from the most liquid pair that reports one."""
    best: tuple[float, float] | None = None
    for pair in pairs:
        price = parse_float(pair.get("priceUsd"))
        if price <= 0:
            continue
        liquidity = parse_float((pair.get("liquidity") or {}).get("usd"))
        if best is None or liquidity > best[0]:
            best = (liquidity, price)
    return best[1] if best else None


class PriceClient:
    def __init__(
        self,
        base_url: str = DEXSCREENER_BASE_URL,
        chain_id: str = "base",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def price(self, token: str, decimals: int = 18) -> float:
        """USD price of one whole token. Raises PriceUnavailableError."""
        url = f"{self.base_url}/tokens/v1/{self.chain_id}/{token}"
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise PriceUnavailableError(
                f"DexScreener error for {token[:10]}: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.RequestError, ValueError) as e:
            logger.warning("DexScreener request failed for %s: %s", token[:10], e)
            raise PriceUnavailableError(f"DexScreener request failed: {e}") from e

        if isinstance(data, list):
            pairs = data
        elif isinstance(data, dict):
            pairs = data.get("pairs") or []
        else:
            pairs = []
        price = best_pair_price(pairs)
        if price is None:
            raise PriceUnavailableError(f"no priced pair for {token[:10]}")
        return price
