"""Auction platform API client: launches, bids, chain height, bid transaction builder."""

import logging
from typing import Any

import httpx

from launch_agent.errors import AuctionApiError
from launch_agent.models.auction import AuctionInfo, BidBuild, ChainCall, ChainHeight
from launch_agent.models.units import parse_float, parse_int, parse_optional_int

logger = logging.getLogger(__name__)

AUCTION_API_BASE_URL = "https://www.flow.bid/api"


def parse_auction(data: dict[str, Any]) -> AuctionInfo:
    """Build an AuctionInfo from a launch or auction payload.

    The launches list and the single-auction endpoint disagree on a few key
    names; both spellings are accepted.
    """
    address = data.get("auction") or data.get("auctionAddress") or data.get("address") or ""
    return AuctionInfo(
        address=str(address),
        start_height=parse_int(data.get("startBlock")),
        end_height=parse_int(data.get("endBlock")),
        floor_price=parse_int(data.get("floorPrice")),
        clearing_price=parse_optional_int(data.get("clearingPrice")),
        required_raise=parse_int(data.get("requiredCurrencyRaised")),
        auction_amount=parse_int(data.get("auctionAmount")),
        total_supply=parse_int(data.get("totalSupply")),
        token_address=str(data.get("token") or data.get("tokenAddress") or ""),
        token_symbol=str(data.get("tokenSymbol") or ""),
        token_decimals=parse_int(data.get("tokenDecimals"), default=18),
        graduated=bool(data.get("isGraduated", False)),
    )


def parse_bid_build(data: dict[str, Any], valuation: float) -> BidBuild:
    steps = data.get("steps") or data.get("transactions") or []
    calls = [
        ChainCall(
            to=str(s["to"]),
            data=str(s["data"]),
            value=parse_int(s.get("value")),
            description=str(s.get("description", "")),
        )
        for s in steps
    ]
    params = data.get("params") or {}
    return BidBuild(
        calls=calls,
        quantized_price=parse_int(params.get("maxPriceQ96Aligned")),
        valuation=parse_float(params.get("maxFdvUsd"), default=valuation),
        currency_address=str(params.get("currencyAddress", "")),
    )


class AuctionClient:
    def __init__(
        self,
        base_url: str = AUCTION_API_BASE_URL,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error("Auction API request failed %s %s: %s", method, path, e)
            raise AuctionApiError(f"request failed: {e}") from e
        if resp.status_code >= 400:
            raise AuctionApiError(
                f"Auction API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise AuctionApiError(f"invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise AuctionApiError(f"unexpected payload from {path}: {type(data).__name__}")
        return data

    async def get_launches(self) -> list[AuctionInfo]:
        data = await self._request("GET", "/launches")
        return [parse_auction(item) for item in data.get("launches") or []]

    async def get_auction(self, address: str) -> AuctionInfo:
        data = await self._request("GET", f"/launches/{address}")
        info = parse_auction(data)
        if not info.address:
            info = parse_auction({**data, "auction": address})
        return info

    async def get_bids(self, address: str) -> list[dict]:
        data = await self._request("GET", f"/launches/{address}/bids")
        return list(data.get("bids") or [])

    async def get_user_bids(self, bidder: str) -> list[dict]:
        data = await self._request("GET", f"/user/{bidder}/bids")
        return list(data.get("bids") or [])

    async def get_current_height(self) -> ChainHeight:
        data = await self._request("GET", "/block/current")
        height = parse_int(data.get("blockNumber"))
        if height <= 0:
            raise AuctionApiError("block height missing from response")
        return ChainHeight(height=height, timestamp=parse_float(data.get("timestamp")))

    async def build_bid(
        self, bidder: str, auction_address: str, valuation: float, amount: float
    ) -> BidBuild:
        payload = {
            "bidder": bidder,
            "auctionAddress": auction_address,
            "maxFdvUsd": valuation,
            "amount": amount,
        }
        data = await self._request("POST", "/bids/build-tx", json=payload)
        return parse_bid_build(data, valuation)
