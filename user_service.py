"""
Plasa Stamps - User Service

User data as seen by the web app:
- Linked Instagram account (users collection, written by the code flow)
- Follower-since stamps the user can claim
- Account ownership attestation

Plus the legacy address <-> Instagram username link kept in the
addressToPlatforms / instagramToAddress collections.
"""

import os
from typing import Any, Dict, List, Optional

from firestore_service import FirestoreService, firestore_service
from logger import setup_logger, log_activity
from platforms import instagram
from stamps_service import StampsService

logger = setup_logger(__name__)

USERS_COLLECTION = "users"
ADDRESS_TO_PLATFORMS_COLLECTION = "addressToPlatforms"
INSTAGRAM_TO_ADDRESS_COLLECTION = "instagramToAddress"


class AlreadyLinkedError(Exception):
    """Raised when an address or an Instagram username is already linked"""


class UserService:
    """User lookups, Instagram links and stamp listing"""

    def __init__(
        self,
        store: Optional[FirestoreService] = None,
        stamps: Optional[StampsService] = None,
        chain_id: Optional[int] = None
    ):
        self.store = store or firestore_service
        self.stamps = stamps or StampsService(self.store)
        self.chain_id = chain_id if chain_id is not None else int(os.getenv("CHAIN_ID", "1"))

    # ------------------------------------------------------------------
    # Users collection (code flow)
    # ------------------------------------------------------------------

    def get_instagram_username(self, user_id: str) -> Optional[str]:
        user_data = self.store.read(USERS_COLLECTION, user_id) or {}
        return (user_data.get("instagram_data") or {}).get("username") or None

    def get_user_data(self, user_id: str) -> Dict[str, Any]:
        """
        Full user data including the available follower-since stamps.

        Returns:
            {"user_id", "instagram_username", "available_stamps"}
            (available_stamps is None when no Instagram account is linked)
        """
        instagram_username = self.get_instagram_username(user_id)

        available_stamps = None
        if instagram_username:
            available_stamps = self.stamps.get_stamps_signatures(user_id, instagram_username)

        return {
            "user_id": user_id,
            "instagram_username": instagram_username,
            "available_stamps": available_stamps,
        }

    def get_account_ownership(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        AccountOwnership attestation for the linked Instagram account.

        Returns:
            {"signature", "deadline", "platform", "id", "recipient"} or None if not linked
        """
        instagram_username = self.get_instagram_username(user_id)
        if not instagram_username:
            return None

        signature, deadline = self.stamps.signer.sign_account_ownership(
            instagram, instagram_username, user_id, self.chain_id
        )
        return {
            "signature": signature,
            "deadline": deadline,
            "platform": instagram["name"],
            "id": instagram_username,
            "recipient": user_id,
        }

    def set_user_instagram(self, user_id: str, instagram_username: str) -> Dict[str, Any]:
        """Store a plain Instagram username on the user, unique across users"""
        return self.store.set_unique_field(USERS_COLLECTION, user_id, "instagram", instagram_username)

    # ------------------------------------------------------------------
    # Legacy address links
    # ------------------------------------------------------------------

    def get_linked_instagram(self, address: str) -> Optional[str]:
        data = self.store.read(ADDRESS_TO_PLATFORMS_COLLECTION, address) or {}
        return data.get("instagram") or None

    def link_instagram_to_address(self, address: str, instagram_username: str) -> None:
        """
        Link an Instagram username to an address in both directions.

        Both documents are written in one batch so they are created together.

        Raises:
            AlreadyLinkedError: address or username already linked
        """
        db = self.store.db
        address_ref = db.collection(ADDRESS_TO_PLATFORMS_COLLECTION).document(address)
        instagram_ref = db.collection(INSTAGRAM_TO_ADDRESS_COLLECTION).document(instagram_username)

        address_doc = address_ref.get()
        instagram_doc = instagram_ref.get()

        if address_doc.exists and (address_doc.to_dict() or {}).get("instagram"):
            logger.warning(f"⚠️ Address {address[:10]}... already linked")
            raise AlreadyLinkedError("Address is already linked to an Instagram account")

        if instagram_doc.exists:
            logger.warning(f"⚠️ Instagram {instagram_username} already linked")
            raise AlreadyLinkedError("Instagram username is already linked to an address")

        batch = db.batch()
        batch.set(address_ref, {"instagram": instagram_username}, merge=True)
        batch.set(instagram_ref, {"address": address})
        batch.commit()

        log_activity("INFO", "LINK", "Instagram linked to address", address=address[:10], instagram=instagram_username)

    def get_user_data_from_instagram(self, address: str, stamp_addresses: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Legacy user data: linked username plus signatures for the legacy stamps.

        Args:
            address: User address
            stamp_addresses: Only sign stamps with these contract addresses (default: all stamps)
        """
        instagram_username = self.get_linked_instagram(address)
        if not instagram_username:
            return {"address": address, "instagramUsername": None, "availableStamps": None}

        if stamp_addresses:
            stamps = self.stamps.get_stamps_by_contract_addresses(stamp_addresses)
        else:
            stamps = self.stamps.get_all_existing_stamps()

        return {
            "address": address,
            "instagramUsername": instagram_username,
            "availableStamps": self.stamps.get_stamps_signatures(address, instagram_username, stamps),
        }

    def check_follower_since_document(self, collection_id: str, username: str) -> Optional[int]:
        """follower_since of collection_id/username, None if missing"""
        data = self.store.read(collection_id, username)
        if not data:
            return None
        return data.get("follower_since") or None
