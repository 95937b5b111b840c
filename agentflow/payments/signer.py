"""
Payer-side signing for x402 payments
EIP-712 TransferWithAuthorization over the batched Gateway domain
"""

import secrets
from typing import Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3
import structlog

from agentflow.payments.models import PaymentAuthorization, PriceRequirement

logger = structlog.get_logger()

TRANSFER_WITH_AUTHORIZATION_TYPES = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]


@runtime_checkable
class Signer(Protocol):
    """
    Something that can sign EIP-712 typed data for a payer address.

    Implementations may wait on a human (wallet prompt); callers impose
    their own timeout. Declining must raise SigningRejected.
    """

    address: str

    async def sign_typed_data(self, typed_data: dict) -> str:
        ...


def create_nonce() -> str:
    """Fresh single-use bytes32 nonce as 0x-prefixed hex"""
    return Web3.to_hex(secrets.token_bytes(32))


def build_authorization(
    requirement: PriceRequirement,
    payer: str,
    now: int,
    clock_skew_seconds: int,
    nonce: Optional[str] = None,
) -> PaymentAuthorization:
    """Authorization valid for [now - skew, now + requirement.maxTimeoutSeconds]"""
    return PaymentAuthorization(
        from_address=Web3.to_checksum_address(payer),
        to=Web3.to_checksum_address(requirement.pay_to),
        value=requirement.amount,
        valid_after=str(now - clock_skew_seconds),
        valid_before=str(now + requirement.max_timeout_seconds),
        nonce=nonce or create_nonce(),
    )


def build_typed_data(requirement: PriceRequirement, authorization: PaymentAuthorization) -> dict:
    """Create EIP-712 typed data for payment authorization"""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPES,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": requirement.extra.name,
            "version": requirement.extra.version,
            "chainId": requirement.chain_id,
            "verifyingContract": Web3.to_checksum_address(requirement.extra.verifying_contract),
        },
        "message": {
            "from": Web3.to_checksum_address(authorization.from_address),
            "to": Web3.to_checksum_address(authorization.to),
            "value": int(authorization.value),
            "validAfter": int(authorization.valid_after),
            "validBefore": int(authorization.valid_before),
            "nonce": Web3.to_bytes(hexstr=authorization.nonce),
        },
    }


def recover_signer(typed_data: dict, signature: str) -> str:
    """Address that produced `signature` over `typed_data`"""
    encoded = encode_typed_data(full_message=typed_data)
    return Account.recover_message(encoded, signature=signature)


class LocalAccountSigner:
    """Signs with a private key held in process memory"""

    def __init__(self, private_key: str):
        self.account = Account.from_key(private_key)
        self.address = self.account.address

    async def sign_typed_data(self, typed_data: dict) -> str:
        encoded = encode_typed_data(full_message=typed_data)
        signed = self.account.sign_message(encoded)
        logger.debug("typed_data_signed", payer=self.address)
        return Web3.to_hex(signed.signature)
