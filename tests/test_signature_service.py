import time

import pytest

from conftest import SIGNER_ADDRESS, USER_ADDRESS
from platforms import instagram
from signature_service import (
    ACCOUNT_OWNERSHIP_TYPES,
    FOLLOWER_SINCE_TYPES,
    SignatureConfigError,
    SignatureService,
    build_domain,
    recover_signer,
)


def test_signer_address_from_env(signer):
    assert signer.signer_address == SIGNER_ADDRESS


def test_private_key_without_prefix():
    key = "ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
    assert SignatureService(private_key=key, deadline_minutes="5").signer_address == SIGNER_ADDRESS


def test_missing_private_key(monkeypatch):
    monkeypatch.delenv("EIP712_SIGNER_PRIVATE_KEY")
    with pytest.raises(SignatureConfigError):
        SignatureService()


def test_invalid_deadline_minutes(monkeypatch):
    monkeypatch.setenv("EIP712_DEADLINE_MINUTES", "soon")
    with pytest.raises(SignatureConfigError):
        SignatureService()


def test_deadline_window(signer):
    now = int(time.time())
    deadline = signer.get_deadline()

    assert now + 600 <= deadline <= now + 602


def test_domain_checksums_contract():
    domain = build_domain("0x5fbdb2315678afecb367f032d93f642f64180aa3", "1")

    assert domain == {
        "name": "Plasa Stamps",
        "version": "0.1.0",
        "chainId": 1,
        "verifyingContract": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
    }


def test_follower_since_signature_recovers_signer(signer, stamp):
    signature, deadline = signer.sign_follower_since(USER_ADDRESS.lower(), stamp, 1720000000)

    message = {
        "platform": "Instagram",
        "followed": "ddfundacion",
        "since": 1720000000,
        "recipient": USER_ADDRESS,
        "deadline": deadline,
    }
    assert signature.startswith("0x")
    assert len(signature) == 132
    assert recover_signer(stamp["contractAddress"], stamp["chainId"], FOLLOWER_SINCE_TYPES, message, signature) == SIGNER_ADDRESS


def test_signature_depends_on_message(signer, stamp):
    signature, deadline = signer.sign_follower_since(USER_ADDRESS, stamp, 1720000000)

    tampered = {
        "platform": "Instagram",
        "followed": "ddfundacion",
        "since": 1718236800,
        "recipient": USER_ADDRESS,
        "deadline": deadline,
    }
    assert recover_signer(stamp["contractAddress"], stamp["chainId"], FOLLOWER_SINCE_TYPES, tampered, signature) != SIGNER_ADDRESS


def test_account_ownership_signature_recovers_signer(signer):
    signature, deadline = signer.sign_account_ownership(instagram, "alice", USER_ADDRESS, 11155111)

    message = {"platform": "Instagram", "id": "alice", "recipient": USER_ADDRESS, "deadline": deadline}
    recovered = recover_signer(instagram["ownership_contract"], 11155111, ACCOUNT_OWNERSHIP_TYPES, message, signature)
    assert recovered == SIGNER_ADDRESS
