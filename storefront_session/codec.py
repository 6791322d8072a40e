"""
Token Codec

Reads the claims embedded in a JWT-style bearer token. The signature is not
verified; the issuing server has already done that.
"""

import math
import time
from typing import Any, Dict, Optional

import jwt

from .errors import MalformedTokenError
from .types import DEFAULT_TOKEN_MAX_AGE, Claims


# Claims are only read for scheduling; every check is left to the server
_UNVERIFIED = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


def _numeric(payload: Dict[str, Any], name: str) -> Optional[float]:
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedTokenError(f"Claim {name!r} is not numeric")
    try:
        number = float(value)
    except OverflowError:
        raise MalformedTokenError(f"Claim {name!r} is out of range")
    if not math.isfinite(number):
        raise MalformedTokenError(f"Claim {name!r} is not finite")
    return number


def decode(token: str, default_max_age: float = DEFAULT_TOKEN_MAX_AGE) -> Claims:
    """
    Decode a token's claims.

    Tokens without "exp" but with "iat" expire default_max_age seconds after
    issue; tokens with neither are reported as already expired.

    Raises:
        MalformedTokenError: If the token is not a decodable three-part token
    """
    if not isinstance(token, str) or not token.strip():
        raise MalformedTokenError("Empty token")

    try:
        payload = jwt.decode(token.strip(), options=_UNVERIFIED)
    except (jwt.PyJWTError, ValueError) as e:
        raise MalformedTokenError("Token is not a decodable JWT", {"reason": str(e)})

    exp = _numeric(payload, "exp")
    iat = _numeric(payload, "iat")
    if exp is None:
        exp = iat + default_max_age if iat is not None else 0.0

    subject = payload.get("sub")
    email = payload.get("email")
    return Claims(
        expires_at=exp,
        subject=str(subject) if subject is not None else None,
        issued_at=iat,
        email=email if isinstance(email, str) else None,
        raw=payload,
    )


def is_expired(claims: Claims, now: Optional[float] = None) -> bool:
    """Check whether claims are past expiry."""
    return (time.time() if now is None else now) >= claims.expires_at


def try_decode(token: Optional[str], default_max_age: float = DEFAULT_TOKEN_MAX_AGE) -> Optional[Claims]:
    """Decode, returning None for absent or malformed tokens."""
    if not token:
        return None
    try:
        return decode(token, default_max_age)
    except MalformedTokenError:
        return None


def expires_at(token: Optional[str], default_max_age: float = DEFAULT_TOKEN_MAX_AGE) -> float:
    """Derived expiry of a token; 0.0 (already expired) when it cannot be decoded."""
    claims = try_decode(token, default_max_age)
    return claims.expires_at if claims else 0.0
