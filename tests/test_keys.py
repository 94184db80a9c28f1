import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from castgate.keys import (
    SIGNED_KEY_REQUEST_TYPE,
    SIGNED_KEY_REQUEST_VALIDATOR_EIP_712_DOMAIN,
    Keypair,
    custody_address,
    generate_keypair,
    hex_to_bytes,
    key_request_deadline,
    load_private_key,
    public_key_bytes,
    sign_key_request,
)
from tests.conftest import APP_FID, TEST_ADDRESS, TEST_MNEMONIC


def test_generated_keypair_encoding():
    kp = generate_keypair()

    assert kp.public_key.startswith("0x") and len(kp.public_key) == 66
    assert not kp.private_key.startswith("0x") and len(kp.private_key) == 64
    assert public_key_bytes(load_private_key(kp.private_key)) == hex_to_bytes(kp.public_key)


def test_keypairs_are_fresh():
    assert generate_keypair().private_key != generate_keypair().private_key


def test_load_private_key_requires_32_bytes():
    with pytest.raises(ValueError):
        load_private_key("00" * 31)


def test_keypair_record_round_trip():
    kp = generate_keypair()
    assert Keypair.from_record(kp.to_record()) == kp
    assert Keypair.from_record(None) is None
    assert Keypair.from_record({"publicKey": kp.public_key}) is None


def test_hex_to_bytes_accepts_both_forms():
    assert hex_to_bytes("0xff00") == hex_to_bytes("ff00") == b"\xff\x00"


def test_deadline():
    assert key_request_deadline(86400, now=1_700_000_000) == 1_700_086_400


def test_custody_address():
    assert custody_address(TEST_MNEMONIC) == TEST_ADDRESS


def test_signed_key_request_recovers_app_custody_address():
    kp = generate_keypair()
    deadline = key_request_deadline(3600, now=1_700_000_000)

    signature = sign_key_request(kp.public_key, APP_FID, TEST_MNEMONIC, deadline)
    assert signature.startswith("0x") and len(signature) == 132

    typed = encode_typed_data(
        domain_data=SIGNED_KEY_REQUEST_VALIDATOR_EIP_712_DOMAIN,
        message_types={"SignedKeyRequest": SIGNED_KEY_REQUEST_TYPE},
        message_data={
            "requestFid": APP_FID,
            "key": hex_to_bytes(kp.public_key),
            "deadline": deadline,
        },
    )
    assert Account.recover_message(typed, signature=signature) == TEST_ADDRESS
