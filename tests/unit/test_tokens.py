# =============================================================================
# tests/unit/test_tokens.py
# Unit Tests for token inspection
# =============================================================================

import jwt

from clinic_core.auth.tokens import decode_claims, token_expiry

NOW = 1_700_000_000.0
DAY = 24 * 60 * 60


class TestDecodeClaims:
    """Test payload decoding"""

    def test_reads_payload(self, token_factory):
        assert decode_claims(token_factory({"sub": "u1", "exp": 5}))["sub"] == "u1"

    def test_garbage_is_none(self):
        assert decode_claims("not-a-token") is None
        assert decode_claims("a.b") is None
        assert decode_claims("a.!!!.c") is None
        assert decode_claims(None) is None

    def test_non_object_payload_is_none(self):
        token = jwt.PyJWS().encode(b"[1, 2, 3]", "server-secret-of-sufficient-length-0", algorithm="HS256")
        assert decode_claims(token) is None

    def test_signature_is_not_checked_client_side(self):
        token = jwt.encode({"sub": "u1"}, "a-key-only-the-backend-holds-000000", algorithm="HS256")
        assert decode_claims(token) == {"sub": "u1"}


class TestTokenExpiry:
    """Test the single token policy: unreadable means invalid"""

    def test_exp_claim_wins(self, token_factory):
        assert token_expiry(token_factory({"exp": NOW + 60}), NOW, DAY) == NOW + 60

    def test_missing_exp_gets_default_lifetime(self, token_factory):
        assert token_expiry(token_factory({"sub": "u1"}), NOW, DAY) == NOW + DAY

    def test_unreadable_token_has_no_expiry(self):
        assert token_expiry("opaque-token", NOW, DAY) is None

    def test_non_numeric_exp_has_no_expiry(self, token_factory):
        assert token_expiry(token_factory({"exp": "tomorrow"}), NOW, DAY) is None
        assert token_expiry(token_factory({"exp": True}), NOW, DAY) is None
