"""
mealdrop.api.deps — FastAPI dependency injection
=================================================

Identity comes from the external auth provider as an HS256 JWT whose ``sub``
claim is the ledger ``user_id``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from mealdrop.config import MealdropConfig, load_config
from mealdrop.database.engine import create_db_engine
from mealdrop.services.payments import (
    PaymentRefFormatVerifier,
    PaymentVerifier,
    RejectingPaymentVerifier,
)

_WEAK_SECRETS = frozenset({
    "mealdrop-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> MealdropConfig:
    return load_config(os.getenv("MEALDROP_CONFIG", "config.yaml"))


def get_payment_verifier(cfg: MealdropConfig = Depends(get_config)) -> PaymentVerifier:
    """Fail closed unless the deployment trusts forwarded processor ids.

    Production wires a processor-backed verifier here by overriding this
    dependency; ``trust_payment_refs`` is only for setups where a processor
    webhook has already confirmed the payment.
    """
    if cfg.trust_payment_refs:
        return PaymentRefFormatVerifier()
    return RejectingPaymentVerifier()


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Validate the JWT and return the caller's ``user_id``. Raises 401 if invalid."""
    return str(_decode_bearer(authorization)["sub"])


def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    """Like :func:`get_current_user` but anonymous callers get ``None``."""
    if not authorization:
        return None
    return str(_decode_bearer(authorization)["sub"])


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401/403 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
