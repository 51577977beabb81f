# =============================================================================
# clinic_core/auth/tokens.py
# Client-side inspection of signed session tokens
# =============================================================================
"""
The signature can only be checked by the backend; the client reads the
payload to learn when the token expires. Any token that cannot be read is
treated as invalid.
"""

from __future__ import annotations
from typing import Any, Dict, Optional

import jwt


def decode_claims(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the JWT payload as a dict, or None if the token is unreadable."""
    if not token or not isinstance(token, str):
        return None

    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None


def token_expiry(token: Optional[str], issued_at: float, default_ttl: float) -> Optional[float]:
    """
    Expiry timestamp (epoch seconds) for `token`.

    Tokens without an `exp` claim get `issued_at + default_ttl`. Returns
    None when the token is unreadable or `exp` is not a number.
    """
    claims = decode_claims(token)
    if claims is None:
        return None

    exp = claims.get("exp")
    if exp is None:
        return issued_at + default_ttl
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)
