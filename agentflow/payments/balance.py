"""
USDC balance lookups over JSON-RPC
"""

import asyncio
from decimal import Decimal
from typing import Optional

from web3 import Web3

from agentflow.config import AgentFlowConfig
from agentflow.payments.pricing import USDC_DECIMALS

# Minimal ERC20 ABI, read-only
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
]


def format_usdc(amount: Decimal) -> str:
    """Plain decimal form without trailing zeros, e.g. '12.5' or '0'"""
    return format(amount.normalize(), "f")


class UsdcBalanceReader:
    """Reads USDC balances from the chain; never signs or sends anything"""

    def __init__(self, rpc_url: str, usdc_address: str, w3: Optional[Web3] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.usdc = self.w3.eth.contract(
            address=Web3.to_checksum_address(usdc_address),
            abi=ERC20_BALANCE_ABI,
        )

    @classmethod
    def from_config(cls, config: AgentFlowConfig) -> "UsdcBalanceReader":
        return cls(config.rpc_url, config.usdc_address)

    def get_usdc_balance(self, address: str) -> Decimal:
        """Get USDC balance for an address"""
        target = Web3.to_checksum_address(address)
        balance_units = self.usdc.functions.balanceOf(target).call()
        return Decimal(balance_units) / Decimal(10 ** USDC_DECIMALS)

    async def balance_of(self, address: str) -> Decimal:
        # web3's HTTP provider blocks; keep it off the event loop
        return await asyncio.to_thread(self.get_usdc_balance, address)
