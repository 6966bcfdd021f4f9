"""
Plasa Stamps - Stamps Service

Follower-since stamps for Instagram:
- Stamp definitions stored in Firestore
- "Follower since" lookups in the imported follower exports
- Signature generation for every stamp a user can claim

When no follow timestamp is known a random plausible one is used and the
result is flagged as not authentic.
"""

import random
import time
from typing import Any, Dict, List, Optional, Tuple

from firestore_service import FirestoreService, firestore_service
from logger import setup_logger
from signature_service import SignatureService

logger = setup_logger(__name__)

FOLLOWER_SINCE_STAMPS_COLLECTION = "follower-since-stamps"
LEGACY_STAMPS_COLLECTION = "stamps"

# Unix timestamp for June 12, 2024 (start of the follower exports)
FOLLOWER_SINCE_EPOCH = 1718236800


def follower_collection_name(platform: str, followed_account: str) -> str:
    """Collection holding the follower export of one account"""
    return f"followers-{platform.lower()}-{followed_account}"


def follower_document_id(username: str) -> str:
    """Document id of a follower; the "@" prefix keeps ids clear of Firestore's reserved __x__ names"""
    username = username.strip()
    return username if username.startswith("@") else "@" + username


def generate_random_follower_since(now: Optional[int] = None) -> int:
    """Random Unix timestamp between June 12, 2024 and now"""
    now = int(now if now is not None else time.time())
    if now <= FOLLOWER_SINCE_EPOCH:
        return FOLLOWER_SINCE_EPOCH
    return FOLLOWER_SINCE_EPOCH + random.randrange(now - FOLLOWER_SINCE_EPOCH)


def stamp_from_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the stamp definition fields"""
    return {
        "contractAddress": data["contractAddress"],
        "chainId": int(data["chainId"]),
        "platform": data["platform"],
        "followedAccount": data["followedAccount"],
    }


class StampsService:
    """Stamp definitions, follower lookups and stamp signatures"""

    def __init__(self, store: Optional[FirestoreService] = None, signer: Optional[SignatureService] = None):
        self.store = store or firestore_service
        self._signer = signer

    @property
    def signer(self) -> SignatureService:
        if self._signer is None:
            self._signer = SignatureService()
        return self._signer

    # ------------------------------------------------------------------
    # Stamp definitions
    # ------------------------------------------------------------------

    def get_instagram_stamps(self) -> List[Dict[str, Any]]:
        """All follower-since stamps for the instagram platform"""
        documents = self.store.query_by_field(FOLLOWER_SINCE_STAMPS_COLLECTION, "platform", "instagram")
        if not documents:
            logger.warning("⚠️ No Instagram stamps found")
            return []
        return [stamp_from_document(doc) for doc in documents]

    def get_all_existing_stamps(self) -> List[Dict[str, Any]]:
        return [stamp_from_document(doc) for doc in self.store.read_all(LEGACY_STAMPS_COLLECTION)]

    def get_stamps_by_contract_addresses(self, contract_addresses: List[str]) -> List[Dict[str, Any]]:
        """Legacy stamps whose contract address is in the list (case-insensitive)"""
        wanted = {address.strip().lower() for address in contract_addresses if address.strip()}
        return [
            stamp for stamp in self.get_all_existing_stamps()
            if stamp["contractAddress"].lower() in wanted
        ]

    # ------------------------------------------------------------------
    # Follower since
    # ------------------------------------------------------------------

    def get_follower_since(self, platform: str, followed_account: str, follower_account: str) -> Optional[int]:
        """
        Look up when follower_account started following followed_account.

        Returns:
            Timestamp in seconds, or None if the follower is not in the export
        """
        data = self.store.read(
            follower_collection_name(platform, followed_account),
            follower_document_id(follower_account)
        )
        if not data or not data.get("follower_since"):
            return None
        return int(data["follower_since"])

    def check_follower_since(self, platform: str, followed_account: str, follower_account: str) -> Tuple[int, bool]:
        """
        Returns:
            (since, authentic) - a random since with authentic=False when no real data exists
        """
        since = self.get_follower_since(platform, followed_account, follower_account)
        if since is not None:
            return since, True
        return generate_random_follower_since(), False

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def get_stamp_signature(self, recipient: str, instagram_username: str, stamp: Dict[str, Any]) -> Dict[str, Any]:
        since, authentic = self.check_follower_since(stamp["platform"], stamp["followedAccount"], instagram_username)
        signature, deadline = self.signer.sign_follower_since(recipient, stamp, since)

        logger.debug(
            f"🔏 FollowerSince signed: {instagram_username} -> {stamp['followedAccount']} "
            f"(authentic={authentic})"
        )
        return {
            "signature": signature,
            "deadline": deadline,
            "since": since,
            "stamp": stamp,
            "authentic": authentic,
        }

    def get_stamps_signatures(
        self,
        recipient: str,
        instagram_username: str,
        stamps: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        """
        Sign every stamp for a user.

        Args:
            recipient: Address receiving the stamps
            instagram_username: Linked Instagram username of the user
            stamps: Stamps to sign (default: all Instagram follower-since stamps)

        Raises:
            ValueError: instagram_username is empty
        """
        if not instagram_username:
            raise ValueError("Instagram username is required")

        if stamps is None:
            stamps = self.get_instagram_stamps()

        return [self.get_stamp_signature(recipient, instagram_username, stamp) for stamp in stamps]
