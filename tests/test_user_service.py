import pytest

from conftest import STAMP_CONTRACT, USER_ADDRESS
from firestore_service import FieldConflictError
from stamps_service import StampsService
from user_service import AlreadyLinkedError, UserService


@pytest.fixture
def users(store, signer):
    return UserService(store, StampsService(store, signer), chain_id=11155111)


def link_user(fake_db, user_id=USER_ADDRESS, username="alice"):
    fake_db.collection("users").document(user_id).set({
        "instagram_id": 4242,
        "instagram_data": {"id": 4242, "username": username},
    })


def add_stamp(fake_db, collection="follower-since-stamps", contract=STAMP_CONTRACT):
    fake_db.collection(collection).document().set({
        "contractAddress": contract,
        "chainId": 11155111,
        "platform": "instagram",
        "followedAccount": "ddfundacion",
    })


def test_chain_id_from_env(store):
    assert UserService(store).chain_id == 11155111


def test_get_user_data_without_instagram(users):
    assert users.get_user_data(USER_ADDRESS) == {
        "user_id": USER_ADDRESS,
        "instagram_username": None,
        "available_stamps": None,
    }


def test_get_user_data_with_stamps(users, fake_db):
    link_user(fake_db)
    add_stamp(fake_db)

    data = users.get_user_data(USER_ADDRESS)

    assert data["instagram_username"] == "alice"
    assert len(data["available_stamps"]) == 1
    assert data["available_stamps"][0]["authentic"] is False


def test_get_account_ownership(users, fake_db):
    link_user(fake_db)

    ownership = users.get_account_ownership(USER_ADDRESS)

    assert ownership["platform"] == "Instagram"
    assert ownership["id"] == "alice"
    assert ownership["recipient"] == USER_ADDRESS
    assert ownership["signature"].startswith("0x")


def test_get_account_ownership_not_linked(users):
    assert users.get_account_ownership(USER_ADDRESS) is None


def test_set_user_instagram_is_unique(users):
    users.set_user_instagram("0xa", "alice")

    with pytest.raises(FieldConflictError):
        users.set_user_instagram("0xb", "alice")


def test_link_instagram_to_address(users, fake_db):
    users.link_instagram_to_address(USER_ADDRESS, "alice")

    assert fake_db.data["addressToPlatforms"][USER_ADDRESS] == {"instagram": "alice"}
    assert fake_db.data["instagramToAddress"]["alice"] == {"address": USER_ADDRESS}
    assert users.get_linked_instagram(USER_ADDRESS) == "alice"


def test_link_keeps_other_platforms(users, fake_db):
    fake_db.collection("addressToPlatforms").document(USER_ADDRESS).set({"x": "alice_x"})

    users.link_instagram_to_address(USER_ADDRESS, "alice")

    assert fake_db.data["addressToPlatforms"][USER_ADDRESS] == {"x": "alice_x", "instagram": "alice"}


def test_link_refuses_linked_address(users, fake_db):
    users.link_instagram_to_address(USER_ADDRESS, "alice")

    with pytest.raises(AlreadyLinkedError):
        users.link_instagram_to_address(USER_ADDRESS, "bob")
    assert "bob" not in fake_db.data["instagramToAddress"]


def test_link_refuses_linked_username(users, fake_db):
    users.link_instagram_to_address(USER_ADDRESS, "alice")

    with pytest.raises(AlreadyLinkedError):
        users.link_instagram_to_address("0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC", "alice")


def test_get_user_data_from_instagram_not_linked(users):
    assert users.get_user_data_from_instagram(USER_ADDRESS) == {
        "address": USER_ADDRESS,
        "instagramUsername": None,
        "availableStamps": None,
    }


def test_get_user_data_from_instagram_filters_stamps(users, fake_db):
    users.link_instagram_to_address(USER_ADDRESS, "alice")
    add_stamp(fake_db, "stamps")
    add_stamp(fake_db, "stamps", contract="0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512")

    everything = users.get_user_data_from_instagram(USER_ADDRESS)
    filtered = users.get_user_data_from_instagram(USER_ADDRESS, [STAMP_CONTRACT.lower()])

    assert everything["instagramUsername"] == "alice"
    assert len(everything["availableStamps"]) == 2
    assert [s["stamp"]["contractAddress"] for s in filtered["availableStamps"]] == [STAMP_CONTRACT]


def test_check_follower_since_document(users, fake_db):
    fake_db.collection("followers-instagram-ddfundacion").document("alice").set({"follower_since": 1720000000})

    assert users.check_follower_since_document("followers-instagram-ddfundacion", "alice") == 1720000000
    assert users.check_follower_since_document("followers-instagram-ddfundacion", "bob") is None
