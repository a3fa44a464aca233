"""Tests for response signing."""

import dataclasses

from hello_overlay.protocol import Name, Response
from hello_overlay.security import DIGEST_SHA256, HMAC_SHA256, KeyChain


def _response():
    return Response(Name.from_uri("/hello/seq=0"), content=b"Hello World!!!", freshness_period=1.0)


def test_digest_signature_without_key():
    keychain = KeyChain(key="")
    signed = keychain.sign(_response())
    assert signed.signature.type == DIGEST_SHA256
    assert signed.signature.key_name is None
    assert len(signed.signature.value) == 32
    assert keychain.verify(signed)


def test_hmac_signature_with_key():
    keychain = KeyChain(key="secret", key_name="/test/key")
    signed = keychain.sign(_response())
    assert signed.signature.type == HMAC_SHA256
    assert signed.signature.key_name == "/test/key"
    assert keychain.verify(signed)
    assert not KeyChain(key="other").verify(signed)
    assert not KeyChain(key="").verify(signed)


def test_sign_returns_new_value():
    original = _response()
    signed = KeyChain(key="").sign(original)
    assert original.signature is None
    assert signed == original


def test_tampered_content_fails_verification():
    keychain = KeyChain(key="secret")
    signed = keychain.sign(_response())
    tampered = dataclasses.replace(signed, content=b"Goodbye")
    assert not keychain.verify(tampered)


def test_unsigned_response_fails_verification():
    assert not KeyChain(key="").verify(_response())
