"""
Google Drive slot store.

Saves live in the application data folder of the player's Drive, one
file per slot, zlib-compressed when that makes the file noticeably
smaller. Slot metadata travels in the file's appProperties (and the
player summary as JSON in its description), so a stat never has to
download the payload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import zlib
from datetime import datetime, timedelta, timezone
from io import BytesIO

from django.conf import settings
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from savesync import secrets
from savesync.stores.base import RemoteQuota, RemoteStore
from savesync.sync.exceptions import (
    NotFound,
    QuotaExceeded,
    RemoteRejected,
    RemoteUnavailable,
    SyncError,
)
from savesync.sync.slots import SlotMetadata, SlotRecord

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.appdata"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
APP_DATA_FOLDER = "appDataFolder"
SAVE_MIME_TYPE = "application/octet-stream"
FILE_FIELDS = "id,name,size,modifiedTime,appProperties,description"

QUOTA_REASONS = {"storageQuotaExceeded", "quotaExceeded"}
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}

ZLIB_ENCODING = "zlib"
IDENTITY_ENCODING = "identity"
# Store compressed only when it saves at least this fraction of the bytes
MIN_COMPRESSION_SAVING = 0.1


def slot_file_name(slot_number: int) -> str:
    return f"slot-{slot_number}.sav"


def parse_slot_file_name(name: str) -> int | None:
    if not (name.startswith("slot-") and name.endswith(".sav")):
        return None
    try:
        return int(name[len("slot-"):-len(".sav")])
    except ValueError:
        return None


def _client_config() -> dict:
    client_id = getattr(settings, "GOOGLE_CLIENT_ID", None)
    client_secret = getattr(settings, "GOOGLE_CLIENT_SECRET", None)
    if not (client_id and client_secret):
        stored = secrets.get_oauth_client_config() or {}
        client_id = stored.get("client_id")
        client_secret = stored.get("client_secret")
    if not (client_id and client_secret):
        raise RemoteRejected("Google OAuth client is not configured")
    return {"client_id": client_id, "client_secret": client_secret}


def create_oauth_flow() -> InstalledAppFlow:
    """OAuth flow for signing a player in from this machine."""
    client = _client_config()
    client_config = {
        "installed": {
            "client_id": client["client_id"],
            "client_secret": client["client_secret"],
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": TOKEN_URI,
            "redirect_uris": ["http://localhost"],
        }
    }
    return InstalledAppFlow.from_client_config(client_config, scopes=SCOPES)


def sign_in(profile: str, open_browser: bool = True) -> Credentials:
    """
    Run the browser consent flow and store the resulting tokens.

    Blocks until the player finishes signing in.
    """
    flow = create_oauth_flow()
    credentials = flow.run_local_server(port=0, open_browser=open_browser)
    secrets.set_tokens(
        profile,
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        expires_at=credentials.expiry,
    )
    logger.info(f"Signed in profile {profile!r} to Google Drive")
    return credentials


def _error_reason(error: HttpError) -> str:
    try:
        details = json.loads(error.content.decode("utf-8"))["error"]
        return details.get("errors", [{}])[0].get("reason") or details.get("status", "")
    except (ValueError, KeyError, IndexError, AttributeError, TypeError):
        return ""


def translate_http_error(error: HttpError, slot_number: int | None = None) -> SyncError:
    """Map a Drive API error onto the sync error taxonomy."""
    status = error.resp.status
    reason = _error_reason(error)
    message = f"Google Drive returned {status}" + (f" ({reason})" if reason else "")

    if status == 404:
        return NotFound(message, slot_number)
    if status == 403 and reason in QUOTA_REASONS:
        return QuotaExceeded(message, slot_number)
    if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS) or status >= 500:
        return RemoteUnavailable(message, slot_number)
    return RemoteRejected(message, slot_number)


def encode_payload(payload: bytes, compress: bool = True) -> tuple[bytes, str]:
    """Bytes to upload for a payload, and the encoding they are stored in."""
    if compress and payload:
        compressed = zlib.compress(payload, 6)
        if len(compressed) <= len(payload) * (1 - MIN_COMPRESSION_SAVING):
            return compressed, ZLIB_ENCODING
    return payload, IDENTITY_ENCODING


def decode_payload(data: bytes, encoding: str | None, slot_number: int | None = None) -> bytes:
    """
    Raises:
        RemoteRejected: If the file is in an unknown encoding or does not decompress
    """
    if encoding in (None, "", IDENTITY_ENCODING):
        return data
    if encoding != ZLIB_ENCODING:
        raise RemoteRejected(f"Cloud save uses unknown encoding {encoding!r}", slot_number)
    try:
        return zlib.decompress(data)
    except zlib.error as e:
        raise RemoteRejected(f"Cloud save is corrupt: {e}", slot_number) from e


def _file_metadata(data: dict) -> SlotMetadata:
    props = data.get("appProperties") or {}
    modified = props.get("lastModified") or data["modifiedTime"]
    checksum = props.get("checksum") or f"drive:{data['id']}:{data['modifiedTime']}"

    player_summary = {}
    if data.get("description"):
        try:
            player_summary = json.loads(data["description"])
        except ValueError:
            logger.debug(f"Ignoring non-JSON description on Drive file {data['id']}")

    return SlotMetadata.from_dict(
        {
            "last_modified": modified,
            "checksum": checksum,
            "size_bytes": props.get("sizeBytes", data.get("size", 0)),
            "player_summary": player_summary if isinstance(player_summary, dict) else {},
            "is_favorite": props.get("isFavorite") == "true",
        }
    )


def _file_body(slot_number: int, metadata: SlotMetadata, encoding: str = IDENTITY_ENCODING) -> dict:
    return {
        "name": slot_file_name(slot_number),
        "mimeType": SAVE_MIME_TYPE,
        "description": json.dumps(metadata.player_summary, sort_keys=True),
        "appProperties": {
            "slotNumber": str(slot_number),
            "checksum": metadata.checksum,
            "lastModified": metadata.last_modified.isoformat(),
            "sizeBytes": str(metadata.size_bytes),
            "isFavorite": "true" if metadata.is_favorite else "false",
            "encoding": encoding,
        },
    }


class DriveSlotStore(RemoteStore):
    """
    RemoteStore over the Drive v3 API.

    The API client is blocking, so every call runs in a worker thread.
    Each thread gets its own service object since the underlying HTTP
    client is not thread-safe.
    """

    name = "google-drive"

    def __init__(self, profile: str = "default", online: bool = True, service=None, compress: bool = True):
        self.profile = profile
        self.online = online
        self.compress = compress
        self._credentials: Credentials | None = None
        self._credentials_lock = threading.Lock()
        self._local = threading.local()
        self._service = service

    def is_available(self) -> bool:
        if not self.online:
            return False
        if self._service is not None:
            return True
        try:
            return secrets.has_tokens(self.profile)
        except secrets.SecretsError as e:
            logger.warning(f"Cannot read cloud save tokens: {e}")
            return False

    # Authentication

    def _get_credentials(self) -> Credentials:
        if self._credentials is None:
            tokens = secrets.get_tokens(self.profile)
            if tokens is None:
                raise RemoteRejected(f"Profile {self.profile!r} is not signed in to Google Drive")

            client = _client_config()
            self._credentials = Credentials(
                token=tokens["access_token"],
                refresh_token=tokens.get("refresh_token"),
                token_uri=TOKEN_URI,
                client_id=client["client_id"],
                client_secret=client["client_secret"],
                scopes=SCOPES,
                expiry=tokens.get("expires_at"),
            )
        return self._credentials

    def refresh_token_if_needed(self) -> bool:
        """
        Refresh the access token if it expires within five minutes.

        Raises:
            RemoteRejected: If there is no refresh token or Google refuses it
            RemoteUnavailable: If Google cannot be reached
        """
        with self._credentials_lock:
            credentials = self._get_credentials()

            if credentials.expiry:
                expiry = credentials.expiry.replace(tzinfo=timezone.utc)
                if expiry > datetime.now(timezone.utc) + timedelta(minutes=5):
                    return False

            if not credentials.refresh_token:
                raise RemoteRejected("Google Drive session expired; sign in again")

            try:
                credentials.refresh(Request())
            except RefreshError as e:
                logger.error(f"Token refresh rejected for profile {self.profile!r}: {e}")
                raise RemoteRejected(f"Google Drive sign-in is no longer valid: {e}") from e
            except TransportError as e:
                raise RemoteUnavailable(f"Could not reach Google to refresh sign-in: {e}") from e

            secrets.set_tokens(
                self.profile,
                access_token=credentials.token,
                refresh_token=credentials.refresh_token,
                expires_at=credentials.expiry,
            )
            logger.info(f"Refreshed Google Drive token for profile {self.profile!r}")
            return True

    def _get_service(self):
        if self._service is not None:
            return self._service
        service = getattr(self._local, "service", None)
        if service is None:
            self.refresh_token_if_needed()
            service = build("drive", "v3", credentials=self._get_credentials(), cache_discovery=False)
            self._local.service = service
        return service

    # Blocking API calls

    def _run(self, fn, slot_number: int | None = None):
        try:
            return fn()
        except HttpError as e:
            error = translate_http_error(e, slot_number)
            logger.debug(f"Drive call failed for slot {slot_number}: {error}")
            raise error from e
        except RefreshError as e:
            raise RemoteRejected(f"Google Drive sign-in is no longer valid: {e}", slot_number) from e
        except TransportError as e:
            raise RemoteUnavailable(f"Could not reach Google Drive: {e}", slot_number) from e

    def _find_file(self, slot_number: int) -> dict | None:
        response = (
            self._get_service()
            .files()
            .list(
                spaces=APP_DATA_FOLDER,
                q=f"name = '{slot_file_name(slot_number)}' and trashed = false",
                fields=f"files({FILE_FIELDS})",
                orderBy="modifiedTime desc",
                pageSize=10,
            )
            .execute()
        )
        files = response.get("files", [])
        if len(files) > 1:
            logger.warning(f"Found {len(files)} Drive files for slot {slot_number}; using the newest")
        return files[0] if files else None

    def _stat(self, slot_number: int) -> SlotMetadata | None:
        data = self._find_file(slot_number)
        return _file_metadata(data) if data else None

    def _read(self, slot_number: int) -> SlotRecord:
        data = self._find_file(slot_number)
        if data is None:
            raise NotFound("No cloud save in slot", slot_number)

        buffer = BytesIO()
        request = self._get_service().files().get_media(fileId=data["id"])
        downloader = MediaIoBaseDownload(buffer, request)
        done = False
        while not done:
            status, done = downloader.next_chunk()
            if status:
                logger.debug(f"Slot {slot_number} download: {int(status.progress() * 100)}%")

        encoding = (data.get("appProperties") or {}).get("encoding")
        payload = decode_payload(buffer.getvalue(), encoding, slot_number)
        return SlotRecord(payload=payload, metadata=_file_metadata(data))

    def _write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        existing = self._find_file(slot_number)
        stored, encoding = encode_payload(payload, self.compress)
        media = MediaIoBaseUpload(BytesIO(stored), mimetype=SAVE_MIME_TYPE, resumable=False)
        body = _file_body(slot_number, metadata, encoding)
        files = self._get_service().files()

        if existing is None:
            body["parents"] = [APP_DATA_FOLDER]
            files.create(body=body, media_body=media, fields="id").execute()
        else:
            files.update(fileId=existing["id"], body=body, media_body=media, fields="id").execute()
        logger.debug(
            f"Uploaded slot {slot_number} to Drive: {len(payload)} bytes stored as {len(stored)} ({encoding})"
        )

    def _delete(self, slot_number: int) -> bool:
        data = self._find_file(slot_number)
        if data is None:
            return False
        try:
            self._get_service().files().delete(fileId=data["id"]).execute()
        except HttpError as e:
            if e.resp.status == 404:
                return False
            raise
        return True

    def _list(self) -> set[int]:
        slots = set()
        page_token = None
        while True:
            params = {
                "spaces": APP_DATA_FOLDER,
                "q": "trashed = false",
                "fields": "nextPageToken,files(id,name)",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token
            response = self._get_service().files().list(**params).execute()

            for data in response.get("files", []):
                slot_number = parse_slot_file_name(data.get("name", ""))
                if slot_number is not None:
                    slots.add(slot_number)

            page_token = response.get("nextPageToken")
            if not page_token:
                return slots

    def _quota(self) -> RemoteQuota:
        about = self._get_service().about().get(fields="storageQuota").execute()
        quota = about.get("storageQuota", {})
        limit = quota.get("limit")
        return RemoteQuota(
            used_bytes=int(quota.get("usage", 0)),
            total_bytes=int(limit) if limit is not None else None,
        )

    # SlotStore interface

    async def read(self, slot_number: int) -> SlotRecord:
        return await asyncio.to_thread(self._run, lambda: self._read(slot_number), slot_number)

    async def stat(self, slot_number: int) -> SlotMetadata | None:
        return await asyncio.to_thread(self._run, lambda: self._stat(slot_number), slot_number)

    async def write(self, slot_number: int, payload: bytes, metadata: SlotMetadata) -> None:
        await asyncio.to_thread(
            self._run, lambda: self._write(slot_number, payload, metadata), slot_number
        )

    async def delete(self, slot_number: int) -> bool:
        return await asyncio.to_thread(self._run, lambda: self._delete(slot_number), slot_number)

    async def list(self) -> set[int]:
        return await asyncio.to_thread(self._run, self._list)

    async def quota(self) -> RemoteQuota:
        return await asyncio.to_thread(self._run, self._quota)
