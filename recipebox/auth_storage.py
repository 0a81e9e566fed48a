"""Token persistence helpers for recipebox.

The session is stored in the system keyring as small individual entries
(access token, refresh token, user id, username) under the service name
`recipebox`. Refresh tokens that a backend refuses to store in one piece are
split into base64 chunks.

Functions:
  - save_tokens(session: AuthSession) -> None
  - load_tokens() -> Optional[AuthSession]
  - clear_tokens() -> None
"""

from __future__ import annotations

import base64
from typing import Optional

from .config import KEYRING_SERVICE, get_logger
from .data_models import AuthSession

SERVICE_NAME = KEYRING_SERVICE
# Size of each chunk in bytes when splitting large values for keyring storage.
# Keep this conservative to avoid per-credential limits on Windows Credential Manager.
_CHUNK_SIZE = 1000

_KEYS = ("access_token", "refresh_token", "user_id", "username", "email")

logger = get_logger("auth_storage")


def _keyring():
    try:
        import keyring
    except Exception as e:
        logger.exception("auth_storage: keyring import failed")
        raise RuntimeError("keyring backend is not available") from e
    return keyring


def _store_chunked_value(key_base: str, value: str) -> None:
    """Store a potentially-large string as base64 chunks under
    {key_base}.part{i}, with the part count at {key_base}.parts.
    """
    keyring = _keyring()
    _delete_chunked_value(key_base)

    data = value.encode("utf-8")
    parts = [data[i : i + _CHUNK_SIZE] for i in range(0, len(data), _CHUNK_SIZE)]
    for idx, part in enumerate(parts):
        keyring.set_password(SERVICE_NAME, f"{key_base}.part{idx}", base64.b64encode(part).decode("ascii"))
    keyring.set_password(SERVICE_NAME, f"{key_base}.parts", str(len(parts)))
    logger.debug("auth_storage: stored %s in %d chunk(s)", key_base, len(parts))


def _read_chunked_value(key_base: str) -> Optional[str]:
    keyring = _keyring()
    count_s = keyring.get_password(SERVICE_NAME, f"{key_base}.parts")
    if not count_s:
        return None
    try:
        count = int(count_s)
    except ValueError:
        logger.debug("auth_storage: invalid parts index for %s: %r", key_base, count_s)
        return None

    parts = []
    for i in range(count):
        part_key = f"{key_base}.part{i}"
        b64 = keyring.get_password(SERVICE_NAME, part_key)
        if b64 is None:
            raise RuntimeError(f"missing chunk {part_key}")
        parts.append(base64.b64decode(b64.encode("ascii")))
    return b"".join(parts).decode("utf-8")


def _delete_chunked_value(key_base: str) -> None:
    keyring = _keyring()
    count_s = keyring.get_password(SERVICE_NAME, f"{key_base}.parts")
    if not count_s:
        return
    try:
        count = int(count_s)
    except ValueError:
        count = 0
    for key in [f"{key_base}.part{i}" for i in range(count)] + [f"{key_base}.parts"]:
        try:
            keyring.delete_password(SERVICE_NAME, key)
        except Exception:
            logger.debug("auth_storage: could not delete %s", key)


def save_tokens(session: AuthSession) -> None:
    """Persist the session's token pieces in the keyring.

    Raises if the keyring refuses the access token so callers can surface it.
    """
    keyring = _keyring()
    try:
        keyring.set_password(SERVICE_NAME, "access_token", session.access_token)
        if session.refresh_token:
            try:
                keyring.set_password(SERVICE_NAME, "refresh_token", session.refresh_token)
            except Exception:
                logger.debug("auth_storage: single refresh_token write failed; attempting chunked storage")
                _store_chunked_value("refresh_token", session.refresh_token)
        for key in ("user_id", "username", "email"):
            value = getattr(session, key)
            if value:
                keyring.set_password(SERVICE_NAME, key, value)
        logger.debug("auth_storage: wrote session to keyring")
    except Exception:
        logger.exception("auth_storage: failed to write session to keyring")
        raise


def load_tokens() -> Optional[AuthSession]:
    """Load the stored session, or None when nothing usable is stored."""
    keyring = _keyring()
    values = {key: keyring.get_password(SERVICE_NAME, key) for key in _KEYS}
    if not values["refresh_token"]:
        values["refresh_token"] = _read_chunked_value("refresh_token")

    if not values["access_token"] and not values["refresh_token"]:
        return None
    return AuthSession(
        access_token=values["access_token"] or "",
        refresh_token=values["refresh_token"],
        user_id=values["user_id"],
        username=values["username"],
        email=values["email"],
    )


def clear_tokens() -> None:
    """Remove every stored entry (best-effort per key)."""
    keyring = _keyring()
    for key in _KEYS:
        try:
            keyring.delete_password(SERVICE_NAME, key)
        except Exception:
            logger.debug("auth_storage: nothing to delete for %s", key)
    _delete_chunked_value("refresh_token")
