"""Dry-run chain and swap stand-ins: in-memory balances, simulated fills at live prices."""

import logging
import uuid

from launch_agent.errors import PriceUnavailableError, SwapError
from launch_agent.execution.ports import PriceSource
from launch_agent.models.auction import ChainCall, ChainReceipt
from launch_agent.models.common import USDC_BASE, USDC_DECIMALS
from launch_agent.models.execution import SwapFill
from launch_agent.models.units import from_base_units, to_base_units

logger = logging.getLogger(__name__)


def _tx_hash() -> str:
    return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


class DryRunChain:
    """A wallet that never touches the chain. Every transaction succeeds."""

    def __init__(self, address: str, usdc: int = 0, native: int = 0):
        self._address = address
        self.native = native
        self._balances: dict[str, int] = {}
        self.sent: list[ChainCall] = []
        if usdc:
            self.credit(USDC_BASE, usdc)

    @property
    def address(self) -> str:
        return self._address

    def credit(self, token: str, amount: int) -> None:
        key = token.lower()
        self._balances[key] = self._balances.get(key, 0) + amount

    def debit(self, token: str, amount: int) -> None:
        key = token.lower()
        current = self._balances.get(key, 0)
        if amount > current:
            raise SwapError(f"insufficient {token[:10]} balance: {current} < {amount}")
        self._balances[key] = current - amount

    async def simulate(self, call: ChainCall) -> None:
        return None

    async def send(self, call: ChainCall) -> str:
        tx_hash = _tx_hash()
        self.sent.append(call)
        logger.info("DRY-RUN: send %s to %s (%s)", call.description or "call", call.to[:10], tx_hash[:12])
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> ChainReceipt:
        return ChainReceipt(tx_hash=tx_hash, succeeded=True)

    async def token_balance(self, token: str, owner: str) -> int:
        if owner.lower() != self._address.lower():
            return 0
        return self._balances.get(token.lower(), 0)

    async def native_balance(self, owner: str) -> int:
        return self.native if owner.lower() == self._address.lower() else 0


class DryRunSwapProvider:
    """Fills every swap at the live quoted price and moves dry-run balances."""

    def __init__(self, prices: PriceSource, chain: DryRunChain, usdc: str = USDC_BASE):
        self.prices = prices
        self.chain = chain
        self.usdc = usdc.lower()
        self._decimals: dict[str, int] = {self.usdc: USDC_DECIMALS}

    def register_token(self, token: str, decimals: int) -> None:
        self._decimals[token.lower()] = decimals

    def decimals(self, token: str) -> int:
        return self._decimals.get(token.lower(), 18)

    async def price(self, token: str, decimals: int = 18) -> float:
        self.register_token(token, decimals)
        return await self.prices.price(token, decimals)

    async def swap(self, token_in: str, token_out: str, amount_in: int) -> SwapFill:
        if amount_in <= 0:
            raise SwapError("swap amount must be positive")
        buying = token_in.lower() == self.usdc
        token = token_out if buying else token_in
        decimals = self.decimals(token)
        try:
            price = await self.prices.price(token, decimals)
        except PriceUnavailableError as e:
            raise SwapError(f"no quote for {token[:10]}: {e}") from e

        if buying:
            usd = from_base_units(amount_in, USDC_DECIMALS)
            amount_out = to_base_units(usd / price, decimals)
        else:
            tokens = from_base_units(amount_in, decimals)
            amount_out = to_base_units(tokens * price, USDC_DECIMALS)
        if amount_out <= 0:
            raise SwapError("swap would return nothing")

        self.chain.debit(token_in, amount_in)
        self.chain.credit(token_out, amount_out)
        tx_hash = _tx_hash()
        logger.info(
            "DRY-RUN: swap %d %s -> %d %s at $%.8f",
            amount_in,
            token_in[:10],
            amount_out,
            token_out[:10],
            price,
        )
        return SwapFill(amount_out=amount_out, tx_hash=tx_hash)
