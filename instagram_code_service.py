"""
Plasa Stamps - Instagram Verification Codes

ManyChat sends the Instagram user who asked for a code; the user types the
code in the web app to link the Instagram account to their address.

Code lifecycle:
- 6-digit random code, never equal to another code that is still valid
- Valid for 10 minutes after creation
- Single use: marked used when the account gets linked
- Expiry is checked when the code is read, nothing sweeps old codes
"""

import re
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from firestore_service import FirestoreService, firestore_service
from logger import codes_logger as logger, log_activity

CODES_COLLECTION_NAME = "instagram-codes"
USER_DATA_COLLECTION_NAME = "users"

MINUTE_MS = 60 * 1000
CODE_VALIDITY_MS = 10 * MINUTE_MS

CODE_MIN = 100000
CODE_MAX = 999999
MAX_CODE_ATTEMPTS = 50

DISPLAY_TIMEZONE = ZoneInfo("America/Argentina/Buenos_Aires")
DEFAULT_ONBOARDING_URL = "https://alpha.ddfundacion.org/onboarding"


class InstagramCodeGenerationStatus(str, Enum):
    ALREADY_REGISTERED = "already_registered"
    ACTIVE_CODE_EXISTS = "active_code_exists"
    FIRST_CODE = "first_code"
    CODE_RENEWED = "code_renewed"


class InstagramCodeVerificationStatus(str, Enum):
    SUCCESS = "success"
    USER_ALREADY_LINKED = "user_already_linked"
    INVALID_CODE = "invalid_code"
    EXPIRED_CODE = "expired_code"
    USED_CODE = "used_code"
    INSTAGRAM_ALREADY_LINKED = "instagram_already_linked"


class CodeGenerationError(Exception):
    """Raised when no free code was found within MAX_CODE_ATTEMPTS"""


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_code(value: Any) -> Optional[int]:
    """
    Normalize a submitted code ("123 456", "123456", 123456) to an int.

    Returns:
        The code, or None if it is not a 6-digit number
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        code = value
    elif isinstance(value, str):
        digits = re.sub(r"[\s-]", "", value)
        if not digits.isdigit():
            return None
        code = int(digits)
    else:
        return None
    return code if CODE_MIN <= code <= CODE_MAX else None


def format_code(code: int) -> str:
    """123456 -> "123 456" """
    return re.sub(r"(\d{3})(\d{3})", r"\1 \2", str(code))


def format_datetime(timestamp_ms: int) -> str:
    """Format a millisecond timestamp as dd/mm/yyyy, HH:MM in Argentina time"""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).astimezone(DISPLAY_TIMEZONE)
    return moment.strftime("%d/%m/%Y, %H:%M")


class InstagramCodesCommonService:
    """Shared helpers of the generation and verification services"""

    def __init__(self, store: Optional[FirestoreService] = None):
        self.store = store or firestore_service

    @staticmethod
    def expiration_date(created_at: int) -> int:
        return created_at + CODE_VALIDITY_MS

    def has_expired(self, code_data: Dict[str, Any], now: Optional[int] = None) -> bool:
        now = now if now is not None else now_ms()
        return now > self.expiration_date(int(code_data["created_at"]))

    def is_instagram_id_registered(self, instagram_id: int) -> bool:
        """True if any user already has this Instagram id linked"""
        existing = self.store.query_by_field(USER_DATA_COLLECTION_NAME, "instagram_id", instagram_id)
        return existing is not None

    @staticmethod
    def convert_manychat_data(manychat_data: Dict[str, Any]) -> Dict[str, Any]:
        """ManyChat subscriber payload -> Instagram data stored with codes and users"""
        return {
            "id": int(manychat_data["ig_id"]),
            "username": manychat_data.get("ig_username"),
            "name": manychat_data.get("name"),
            "first_name": manychat_data.get("first_name"),
            "last_name": manychat_data.get("last_name"),
            "profile_pic": manychat_data.get("profile_pic"),
        }


class InstagramCodesGenerationService(InstagramCodesCommonService):
    """Issues verification codes to Instagram users coming from ManyChat"""

    def __init__(self, store: Optional[FirestoreService] = None, onboarding_url: str = DEFAULT_ONBOARDING_URL):
        super().__init__(store)
        self.onboarding_url = onboarding_url

    def get_code_message(self, manychat_data: Dict[str, Any]) -> Dict[str, Any]:
        """Issue (or reuse) a code and wrap it in a ManyChat reply"""
        return self.create_manychat_response(self.get_code(manychat_data))

    def get_code(self, manychat_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Issue a verification code for an Instagram user.

        Args:
            manychat_data: ManyChat subscriber data (needs ig_id)

        Returns:
            {"status": InstagramCodeGenerationStatus, "code": int, "expires_at": ms}
            (code and expires_at missing for ALREADY_REGISTERED)
        """
        instagram_id = int(manychat_data["ig_id"])

        if self.is_instagram_id_registered(instagram_id):
            log_activity("INFO", "CODES", "Instagram already registered", instagram_id=instagram_id)
            return {"status": InstagramCodeGenerationStatus.ALREADY_REGISTERED}

        existing_codes = self.store.query_by_field(CODES_COLLECTION_NAME, "instagram_id", instagram_id) or []
        now = now_ms()

        active = self._find_active_code(existing_codes, now)
        if active:
            return {
                "status": InstagramCodeGenerationStatus.ACTIVE_CODE_EXISTS,
                "code": active["code"],
                "expires_at": self.expiration_date(int(active["created_at"])),
            }

        new_code = self.get_usable_code()
        saved = self.save_new_code(new_code, self.convert_manychat_data(manychat_data))

        status = (
            InstagramCodeGenerationStatus.CODE_RENEWED if existing_codes
            else InstagramCodeGenerationStatus.FIRST_CODE
        )
        log_activity("INFO", "CODES", "Code issued", instagram_id=instagram_id, status=status.value)

        return {
            "status": status,
            "code": new_code,
            "expires_at": self.expiration_date(saved["created_at"]),
        }

    def _find_active_code(self, codes: List[Dict[str, Any]], now: int) -> Optional[Dict[str, Any]]:
        for code_data in codes:
            if not code_data.get("used") and not self.has_expired(code_data, now):
                return code_data
        return None

    def save_new_code(self, code: int, instagram_data: Dict[str, Any]) -> Dict[str, Any]:
        code_data = {
            "code": code,
            "created_at": now_ms(),
            "used": False,
            "instagram_id": instagram_data["id"],
            "instagram_data": instagram_data,
        }
        self.store.write_new(CODES_COLLECTION_NAME, code_data)
        return code_data

    @staticmethod
    def get_random_code() -> int:
        return CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1)

    def get_usable_code(self) -> int:
        """
        Draw random codes until one does not collide with a still valid code.

        Raises:
            CodeGenerationError: no free code after MAX_CODE_ATTEMPTS draws
        """
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = self.get_random_code()
            if self.can_code_be_used(code):
                return code
            logger.debug(f"🎲 Code collision, attempt {attempt}")

        raise CodeGenerationError(f"No free verification code after {MAX_CODE_ATTEMPTS} attempts")

    def can_code_be_used(self, code: int) -> bool:
        """A code number is free if every stored instance of it has expired"""
        existing = self.store.query_by_field(CODES_COLLECTION_NAME, "code", code)
        if not existing:
            return True
        now = now_ms()
        return all(self.has_expired(code_data, now) for code_data in existing)

    def create_manychat_response(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """ManyChat dynamic block (v2) with a single Instagram text message"""
        if result["status"] == InstagramCodeGenerationStatus.ALREADY_REGISTERED:
            message = "Tu cuenta de Instagram ya está vinculada a una cuenta de la plataforma."
        else:
            code = result["code"]
            message = (
                f"Para vincular tu cuenta de Instagram, podés ingresar al siguiente link: "
                f"{self.onboarding_url}?code={code}\n\n"
                f"O ingresar manualmente el siguiente código de verificación: {format_code(code)}\n\n"
                f"Válido hasta: {format_datetime(result['expires_at'])} hs. (UTC-3 Argentina)"
            )

        return {
            "version": "v2",
            "content": {
                "type": "instagram",
                "messages": [{"type": "text", "text": message}],
            },
        }


class InstagramCodesVerificationService(InstagramCodesCommonService):
    """Consumes verification codes and links the Instagram account to a user"""

    def verify_code(self, user_id: str, code: int) -> InstagramCodeVerificationStatus:
        """
        Verify a code for a user and link the Instagram account if it is valid.

        Args:
            user_id: User document id (address)
            code: Submitted 6-digit code

        Returns:
            InstagramCodeVerificationStatus
        """
        user_data = self.store.read(USER_DATA_COLLECTION_NAME, user_id)
        if user_data and user_data.get("instagram_id"):
            return InstagramCodeVerificationStatus.USER_ALREADY_LINKED

        snapshots = self.store.query_snapshots(CODES_COLLECTION_NAME, "code", code)
        if not snapshots:
            return InstagramCodeVerificationStatus.INVALID_CODE

        now = now_ms()
        active = next((doc for doc in snapshots if not self.has_expired(doc.to_dict(), now)), None)
        if active is None:
            return InstagramCodeVerificationStatus.EXPIRED_CODE

        code_data = active.to_dict()
        if code_data.get("used"):
            return InstagramCodeVerificationStatus.USED_CODE

        if self.is_instagram_id_registered(code_data["instagram_id"]):
            return InstagramCodeVerificationStatus.INSTAGRAM_ALREADY_LINKED

        self.link_instagram(user_id, active)
        log_activity("INFO", "CODES", "Instagram linked", user_id=user_id, instagram_id=code_data["instagram_id"])

        return InstagramCodeVerificationStatus.SUCCESS

    def link_instagram(self, user_id: str, code_snapshot) -> None:
        """Mark the code used and write the Instagram link onto the user in one batch"""
        code_data = code_snapshot.to_dict()
        db = self.store.db
        user_ref = db.collection(USER_DATA_COLLECTION_NAME).document(user_id)

        batch = db.batch()
        batch.set(code_snapshot.reference, {"used": True}, merge=True)
        batch.set(user_ref, {
            "instagram_id": code_data["instagram_id"],
            "instagram_data": code_data["instagram_data"],
        }, merge=True)

        try:
            batch.commit()
        except Exception as e:
            logger.error(f"❌ Error linking Instagram to user {user_id}: {e}")
            raise
