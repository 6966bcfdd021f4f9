"""
Plasa Stamps - EIP-712 Signature Service

Signs typed-data attestations ("stamps") with the backend signer key:
- FollowerSince: a follow relationship started at a given timestamp
- AccountOwnership: a platform account belongs to a recipient address

Every signature carries a deadline (now + EIP712_DEADLINE_MINUTES).
"""

import os
import time
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from logger import signer_logger as logger

load_dotenv()

DOMAIN_NAME = "Plasa Stamps"
DOMAIN_VERSION = "0.1.0"

FOLLOWER_SINCE_TYPES = {
    "FollowerSince": [
        {"name": "platform", "type": "string"},
        {"name": "followed", "type": "string"},
        {"name": "since", "type": "uint256"},
        {"name": "recipient", "type": "address"},
        {"name": "deadline", "type": "uint256"},
    ]
}

ACCOUNT_OWNERSHIP_TYPES = {
    "AccountOwnership": [
        {"name": "platform", "type": "string"},
        {"name": "id", "type": "string"},
        {"name": "recipient", "type": "address"},
        {"name": "deadline", "type": "uint256"},
    ]
}


class SignatureConfigError(Exception):
    """Raised when the signer key or deadline window is missing or invalid"""


def build_domain(verifying_contract: str, chain_id: int) -> Dict[str, Any]:
    return {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": int(chain_id),
        "verifyingContract": Web3.to_checksum_address(verifying_contract),
    }


class SignatureService:
    """EIP-712 signer for stamp attestations"""

    def __init__(self, private_key: Optional[str] = None, deadline_minutes: Optional[str] = None):
        private_key = private_key or os.getenv("EIP712_SIGNER_PRIVATE_KEY")
        if not private_key:
            raise SignatureConfigError("EIP712_SIGNER_PRIVATE_KEY environment variable must be set")

        deadline_minutes = deadline_minutes if deadline_minutes is not None else os.getenv("EIP712_DEADLINE_MINUTES")
        try:
            self.deadline_minutes = float(deadline_minutes)
        except (TypeError, ValueError):
            raise SignatureConfigError("EIP712_DEADLINE_MINUTES environment variable must be set to a valid number")

        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._account = Account.from_key(private_key)

        logger.info(f"🔏 EIP-712 signer ready: {self._account.address} (deadline window {self.deadline_minutes} min)")

    @property
    def signer_address(self) -> str:
        return self._account.address

    def get_deadline(self) -> int:
        """Current timestamp in seconds plus the configured window"""
        return int(time.time()) + int(self.deadline_minutes * 60)

    def sign_typed_data(
        self,
        verifying_contract: str,
        chain_id: int,
        types: Dict[str, List[Dict[str, str]]],
        message: Dict[str, Any]
    ) -> Tuple[str, int]:
        """
        Sign structured data according to EIP-712.

        The deadline is computed here and added to the message.

        Args:
            verifying_contract: Contract that verifies the signature
            chain_id: Chain id of the verifying contract
            types: Type definitions (without EIP712Domain)
            message: Message fields except the deadline

        Returns:
            (0x-prefixed signature, deadline)
        """
        deadline = self.get_deadline()
        full_message = dict(message, deadline=deadline)

        signable = encode_typed_data(build_domain(verifying_contract, chain_id), types, full_message)
        signed = self._account.sign_message(signable)

        return Web3.to_hex(signed.signature), deadline

    def sign_follower_since(self, recipient: str, stamp: Dict[str, Any], since: int) -> Tuple[str, int]:
        """
        Sign a FollowerSince stamp.

        Args:
            recipient: Address receiving the stamp
            stamp: Stamp definition (contractAddress, chainId, platform, followedAccount)
            since: Follow start timestamp in seconds
        """
        message = {
            "platform": stamp["platform"],
            "followed": stamp["followedAccount"],
            "since": int(since),
            "recipient": Web3.to_checksum_address(recipient),
        }
        return self.sign_typed_data(stamp["contractAddress"], stamp["chainId"], FOLLOWER_SINCE_TYPES, message)

    def sign_account_ownership(
        self,
        platform: Dict[str, str],
        account_id: str,
        recipient: str,
        chain_id: int
    ) -> Tuple[str, int]:
        """Sign an AccountOwnership stamp against the platform's ownership contract"""
        message = {
            "platform": platform["name"],
            "id": account_id,
            "recipient": Web3.to_checksum_address(recipient),
        }
        return self.sign_typed_data(platform["ownership_contract"], chain_id, ACCOUNT_OWNERSHIP_TYPES, message)


def recover_signer(
    verifying_contract: str,
    chain_id: int,
    types: Dict[str, List[Dict[str, str]]],
    message: Dict[str, Any],
    signature: str
) -> str:
    """Recover the address that signed a typed-data message (message must include the deadline)"""
    signable = encode_typed_data(build_domain(verifying_contract, chain_id), types, message)
    return Account.recover_message(signable, signature=signature)
