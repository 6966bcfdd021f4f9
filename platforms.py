"""
Social platforms supported by the stamp contracts.

Each platform has an account-ownership contract and a follower-since
contract; addresses come from the environment.
"""

import os
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

PLACEHOLDER_CONTRACT = "0x1234567890123456789012345678901234567890"

PLATFORMS: Dict[str, Dict[str, str]] = {
    "instagram": {
        "name": "Instagram",
        "ownership_contract": os.getenv("INSTAGRAM_OWNERSHIP_CONTRACT") or PLACEHOLDER_CONTRACT,
        "follower_since_contract": os.getenv("INSTAGRAM_FOLLOWER_SINCE_CONTRACT") or PLACEHOLDER_CONTRACT,
    },
}


def get_platform(key: str) -> Optional[Dict[str, str]]:
    """Platform config by lowercase key (e.g. "instagram")"""
    return PLATFORMS.get(key.lower())


instagram = PLATFORMS["instagram"]
