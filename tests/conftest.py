import os
import sys
import tempfile
from pathlib import Path

# Environment BEFORE importing any application module
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="stamps-logs-")
os.environ["EIP712_SIGNER_PRIVATE_KEY"] = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
os.environ["EIP712_DEADLINE_MINUTES"] = "10"
os.environ["MANYCHAT_TOKEN"] = "test-manychat-token"
os.environ["CHAIN_ID"] = "11155111"
os.environ["CORS_ORIGINS"] = "*"

sys.path.insert(0, str(Path(__file__).parent))

import pytest

from fake_firestore import FakeClient
from firestore_service import FirestoreService
from signature_service import SignatureService

SIGNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
USER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
STAMP_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture
def fake_db():
    return FakeClient()


@pytest.fixture
def store(fake_db):
    return FirestoreService(fake_db)


@pytest.fixture
def signer():
    return SignatureService()


@pytest.fixture
def stamp():
    return {
        "contractAddress": STAMP_CONTRACT,
        "chainId": 11155111,
        "platform": "Instagram",
        "followedAccount": "ddfundacion",
    }
