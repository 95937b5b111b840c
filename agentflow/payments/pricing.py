"""
Static per-step pricing
Turns configured USD prices into x402 requirements and receipt totals
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from web3 import Web3

from agentflow.config import AgentFlowConfig
from agentflow.payments.models import PriceRequirement, RequirementExtra

# USDC has 6 decimals
USDC_DECIMALS = 6

_DISPLAY_QUANTUM = Decimal("0.001")


def to_minor_units(amount_usdc: Decimal) -> int:
    """Convert a USD amount to USDC smallest unit"""
    return int(amount_usdc * Decimal(10 ** USDC_DECIMALS))


def format_price(amount_usdc: Decimal) -> str:
    """Three-decimal display form used on the progress stream, e.g. '0.005'"""
    return str(amount_usdc.quantize(_DISPLAY_QUANTUM, rounding=ROUND_HALF_UP))


def total_price(prices: Iterable[Decimal]) -> Decimal:
    """Receipt total; always the sum of configured prices, never of content"""
    return sum(prices, Decimal("0"))


def build_price_requirement(config: AgentFlowConfig, step: str, pay_to: str) -> PriceRequirement:
    """
    Create the x402 requirement for one agent endpoint.

    Args:
        config: Static configuration (network, asset, prices)
        step: Pipeline step whose configured price applies
        pay_to: Seller wallet address

    Returns:
        PriceRequirement ready to be sent in a challenge
    """
    return PriceRequirement(
        network=config.network,
        amount=str(to_minor_units(config.price_for(step))),
        asset=Web3.to_checksum_address(config.usdc_address),
        pay_to=Web3.to_checksum_address(pay_to),
        max_timeout_seconds=config.max_timeout_seconds,
        extra=RequirementExtra(
            verifying_contract=Web3.to_checksum_address(config.verifying_contract),
        ),
    )
