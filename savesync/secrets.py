"""
Token storage for the cloud save provider.

OAuth tokens never go into the database. They live in a JSON file,
readable by the owner only (mode 600), keyed by player profile.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from savesync.conf import get_sync_settings

logger = logging.getLogger(__name__)

PROVIDER = "google"
CLIENTS_KEY = "oauth_clients"


class SecretsError(Exception):
    """Base exception for token storage."""


class SecretsFileError(SecretsError):
    """The secrets file could not be read or written."""


def _secrets_path() -> Path:
    return get_sync_settings().secrets_file


def _profile_key(profile: str) -> str:
    return f"{PROVIDER}:{profile}"


def _load() -> dict:
    path = _secrets_path()
    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Secrets file {path} is not valid JSON: {e}")
        raise SecretsFileError(f"Invalid secrets file format: {e}") from e
    except OSError as e:
        logger.error(f"Failed to read secrets file {path}: {e}")
        raise SecretsFileError(f"Failed to read secrets file: {e}") from e


def _save(data: dict) -> None:
    """Replace the secrets file atomically, owner read/write only."""
    path = _secrets_path()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".secrets_", suffix=".tmp")

        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    except OSError as e:
        logger.error(f"Failed to write secrets file {path}: {e}")
        raise SecretsFileError(f"Failed to save secrets file: {e}") from e


def get_tokens(profile: str) -> dict | None:
    """
    Tokens for a profile, or None if the player never signed in.

    ``expires_at`` is returned as a naive UTC datetime, which is what
    google-auth expects for credential expiry.
    """
    tokens = _load().get(_profile_key(profile))
    if tokens is None:
        return None

    expires_at = tokens.get("expires_at")
    if expires_at:
        try:
            parsed = datetime.fromisoformat(expires_at)
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            tokens["expires_at"] = parsed
        except (ValueError, TypeError):
            tokens["expires_at"] = None
    return tokens


def set_tokens(
    profile: str,
    access_token: str,
    refresh_token: str | None,
    expires_at: datetime | None = None,
) -> None:
    secrets = _load()
    secrets[_profile_key(profile)] = {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }
    _save(secrets)
    logger.info(f"Saved cloud save tokens for profile {profile!r}")


def delete_tokens(profile: str) -> bool:
    """Sign a profile out. Returns False if it had no tokens."""
    secrets = _load()
    key = _profile_key(profile)
    if key not in secrets:
        return False

    del secrets[key]
    _save(secrets)
    logger.info(f"Deleted cloud save tokens for profile {profile!r}")
    return True


def has_tokens(profile: str) -> bool:
    return _profile_key(profile) in _load()


def list_profiles() -> list[str]:
    prefix = f"{PROVIDER}:"
    return sorted(key[len(prefix):] for key in _load() if key.startswith(prefix))


def get_oauth_client_config() -> dict | None:
    """OAuth client id/secret stored alongside the tokens, if any."""
    return _load().get(CLIENTS_KEY, {}).get(PROVIDER)


def set_oauth_client_config(client_id: str, client_secret: str) -> None:
    secrets = _load()
    secrets.setdefault(CLIENTS_KEY, {})[PROVIDER] = {
        "client_id": client_id,
        "client_secret": client_secret,
    }
    _save(secrets)
    logger.info("Saved OAuth client config")
