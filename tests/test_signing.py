"""
Tests for HMAC webhook signature helpers.
"""

from plugins.signing import sign_payload, verify_hmac_signature

BODY = b'{"type":"message","team_id":"T1"}'


class TestSignatures:
    def test_valid_signature(self):
        signature = "sha256=" + sign_payload("secret", BODY)
        assert verify_hmac_signature("secret", BODY, signature)

    def test_str_and_bytes_payloads_agree(self):
        assert sign_payload("secret", BODY) == sign_payload("secret", BODY.decode())

    def test_wrong_secret(self):
        signature = "sha256=" + sign_payload("other", BODY)
        assert not verify_hmac_signature("secret", BODY, signature)

    def test_tampered_body(self):
        signature = "sha256=" + sign_payload("secret", BODY)
        assert not verify_hmac_signature("secret", BODY + b" ", signature)

    def test_missing_prefix_or_signature(self):
        assert not verify_hmac_signature("secret", BODY, sign_payload("secret", BODY))
        assert not verify_hmac_signature("secret", BODY, None)

    def test_empty_secret_never_verifies(self):
        assert not verify_hmac_signature("", BODY, "sha256=" + sign_payload("", BODY))

    def test_custom_prefix(self):
        signature = "v0=" + sign_payload("secret", BODY)
        assert verify_hmac_signature("secret", BODY, signature, prefix="v0=")
