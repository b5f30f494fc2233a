import pytest

from repogateway.signing import check_hmac, compute_hmac


def test_hmac_round_trip_and_mismatch():
    key = "Qui?"
    msg1 = b"Hello is it me you're looking for?"
    msg2 = msg1[1:]
    signature = compute_hmac(msg1, key)
    assert check_hmac(msg1, signature, key)
    assert not check_hmac(msg2, signature, key)


def test_known_vector():
    assert compute_hmac(b"what do ya want for nothing?", "Jefe") == (
        b"effcdf6ae5eb2fa2d27416d5f184df9c259a7c79"
    )


def test_hex_encoded_output():
    signature = compute_hmac(b"payload", "secret")
    assert len(signature) == 40
    assert set(signature.decode()) <= set("0123456789abcdef")


def test_wrong_key_rejected():
    signature = compute_hmac(b"payload", "secret")
    assert not check_hmac(b"payload", signature, "other")


@pytest.mark.parametrize("message", ["text message", b"text message"])
def test_str_and_bytes_agree(message):
    signature = compute_hmac(b"text message", "secret")
    assert compute_hmac(message, "secret") == signature
    assert check_hmac(message, signature.decode(), "secret")