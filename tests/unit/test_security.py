"""
Unit tests for webhook signatures
"""

from core.security import compute_signature, verify_signature

BODY = b'{"event":"content_updated"}'


def test_valid_signature():
    signature = compute_signature("secret", BODY)
    assert verify_signature("secret", BODY, signature)


def test_prefixed_signature():
    signature = "sha256=" + compute_signature("secret", BODY)
    assert verify_signature("secret", BODY, signature)


def test_wrong_secret_rejected():
    signature = compute_signature("other", BODY)
    assert not verify_signature("secret", BODY, signature)


def test_tampered_body_rejected():
    signature = compute_signature("secret", BODY)
    assert not verify_signature("secret", BODY + b" ", signature)


def test_missing_signature_or_secret_rejected():
    assert not verify_signature("secret", BODY, None)
    assert not verify_signature("secret", BODY, "")
    assert not verify_signature("", BODY, compute_signature("", BODY))
