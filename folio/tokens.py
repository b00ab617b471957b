"""
Session tokens: issuing signed JWTs and validating them on protected routes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from fastapi import Depends, Header

from folio.config import Settings, get_settings
from folio.db import DbClient, UserRecord
from folio.dependencies import get_db_client
from folio.errors import AuthError

logger = logging.getLogger(__name__)


def issue_token(user: UserRecord, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "_id": user.id,
        "userName": user.user_name,
        "iat": now,
        "exp": now + timedelta(seconds=settings.token_ttl_seconds),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "_id"]},
        )
    except jwt.ExpiredSignatureError as exc:
        logger.debug("Rejected expired token")
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected invalid token: %s", exc)
        raise AuthError("Invalid token") from exc
    return payload


def extract_token(authorization: Optional[str], schemes: Sequence[str]) -> str:
    """Pull the token out of an ``Authorization: <scheme> <token>`` header."""
    if not authorization:
        raise AuthError("Missing authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    allowed = {s.lower() for s in schemes}
    if scheme.lower() not in allowed or not token.strip():
        raise AuthError("Invalid authorization header")
    return token.strip()


def validate_token(token: str, db: DbClient, settings: Settings) -> UserRecord:
    payload = decode_token(token, settings)
    user = db.get_user(str(payload["_id"]))
    if not user:
        logger.debug("Token subject %s no longer resolves", payload["_id"])
        raise AuthError("Invalid token")
    return user


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> UserRecord:
    token = extract_token(authorization, settings.auth_schemes)
    return validate_token(token, db, settings)
