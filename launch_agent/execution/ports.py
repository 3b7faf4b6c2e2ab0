"""Boundaries the agent acts through: chain signing/broadcast and token swaps."""

from typing import Protocol

from launch_agent.models.auction import ChainCall, ChainReceipt
from launch_agent.models.execution import SwapFill


class ChainSender(Protocol):
    """Signs, simulates and broadcasts transactions for one wallet."""

    @property
    def address(self) -> str: ...

    async def simulate(self, call: ChainCall) -> None:
        """Dry-execute ``call``; raises with the revert message on failure."""
        ...

    async def send(self, call: ChainCall) -> str: ...

    async def wait_for_receipt(self, tx_hash: str) -> ChainReceipt: ...

    async def token_balance(self, token: str, owner: str) -> int: ...

    async def native_balance(self, owner: str) -> int: ...


class SwapProvider(Protocol):
    """Quotes and executes token swaps. ``swap`` raises SwapError on failure."""

    async def price(self, token: str, decimals: int = 18) -> float: ...

    async def swap(self, token_in: str, token_out: str, amount_in: int) -> SwapFill: ...


class PriceSource(Protocol):
    async def price(self, token: str, decimals: int = 18) -> float: ...
