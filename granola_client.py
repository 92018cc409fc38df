"""
Granola API client.

Authenticates with the WorkOS tokens the Granola desktop app keeps in
supabase.json, lists documents and fetches their notes panel and transcript.
"""

import json
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import requests

from meeting_models import MeetingContent, NotesDocument

logger = logging.getLogger(__name__)

GRANOLA_API = 'https://api.granola.ai'
WORKOS_AUTH_URL = 'https://api.workos.com/user_management/authenticate'
CLIENT_VERSION = '5.354.0'
USER_AGENT = f'Granola/{CLIENT_VERSION}'
DEFAULT_CLIENT_ID = 'client_01JBVK2S4GBE0SDQF2MPF3VVR6'
REQUEST_TIMEOUT_SECONDS = 30
TOKEN_REFRESH_MARGIN_SECONDS = 60


class GranolaError(RuntimeError):
    pass


def default_granola_dir() -> Path:
    """Where the Granola desktop app keeps its data on this platform."""
    home = Path.home()
    if sys.platform == 'darwin':
        return home / 'Library' / 'Application Support' / 'Granola'
    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA') or str(home / 'AppData' / 'Roaming')
        return Path(appdata) / 'Granola'
    return home / '.granola'


def parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def document_from_api(doc: dict) -> NotesDocument:
    return NotesDocument(
        id=doc['id'],
        title=doc.get('title') or '',
        created_at=parse_timestamp(doc.get('created_at')),
        updated_at=parse_timestamp(doc.get('updated_at')),
        raw=doc,
    )


def read_local_tokens(granola_dir: Path) -> dict:
    """Read WorkOS tokens from Granola's supabase.json."""
    supabase_path = Path(granola_dir) / 'supabase.json'
    if not supabase_path.exists():
        raise GranolaError(
            f"Granola credentials not found at {supabase_path}. "
            "Make sure Granola is installed and you're logged in."
        )

    with open(supabase_path, 'r', encoding='utf-8') as f:
        raw = json.load(f)

    workos = raw.get('workos_tokens') or {}
    if isinstance(workos, str):
        workos = json.loads(workos)

    access_token = workos.get('access_token')
    if not access_token:
        raise GranolaError("No access_token in Granola credentials. Try re-launching Granola and signing in.")

    return {
        'access_token': access_token,
        'refresh_token': workos.get('refresh_token'),
        'client_id': workos.get('client_id') or raw.get('client_id') or DEFAULT_CLIENT_ID,
    }


def prosemirror_to_markdown(node: dict | None) -> str:
    """Render a ProseMirror document (Granola's notes panel) as Markdown."""
    if not node:
        return ''

    def child_text(n: dict) -> str:
        return ''.join(prosemirror_to_markdown(c) for c in n.get('content') or [])

    node_type = node.get('type')
    if node_type == 'heading':
        level = (node.get('attrs') or {}).get('level') or 1
        return f"{'#' * int(level)} {child_text(node)}\n\n"
    if node_type == 'paragraph':
        return f"{child_text(node)}\n\n"
    if node_type == 'bulletList':
        items = [f"- {child_text(item).strip()}" for item in node.get('content') or []]
        return '\n'.join(items) + '\n\n'
    if node_type == 'orderedList':
        items = [f"{i}. {child_text(item).strip()}" for i, item in enumerate(node.get('content') or [], 1)]
        return '\n'.join(items) + '\n\n'
    if node_type == 'text':
        return node.get('text') or ''
    if node_type == 'hardBreak':
        return '\n'
    # doc, listItem and anything unknown: just the children
    return child_text(node)


def format_transcript(utterances: list[dict]) -> str:
    lines = []
    for u in utterances:
        text = (u.get('text') or '').strip()
        if not text:
            continue
        try:
            stamp = parse_timestamp(u.get('start_timestamp')).astimezone().strftime('%H:%M')
        except ValueError:
            stamp = '--:--'
        speaker = 'You' if u.get('source') == 'microphone' else 'Other'
        lines.append(f"[{stamp}] {speaker}: {text}")
    return '\n'.join(lines)


class GranolaClient:
    def __init__(self, granola_dir: str | Path, session: requests.Session | None = None):
        self.granola_dir = Path(granola_dir)
        self.session = session or requests.Session()
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._client_id: str = DEFAULT_CLIENT_ID
        self._expires_at: float = 0.0

    def _refresh(self) -> None:
        resp = self.session.post(
            WORKOS_AUTH_URL,
            json={
                'client_id': self._client_id,
                'grant_type': 'refresh_token',
                'refresh_token': self._refresh_token,
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if resp.status_code != 200:
            raise GranolaError(f"WorkOS token refresh failed ({resp.status_code}): {resp.text.strip()}")
        data = resp.json()
        self._access_token = data['access_token']
        self._refresh_token = data.get('refresh_token') or self._refresh_token
        self._expires_at = time.time() + int(data.get('expires_in') or 3600)

    def _ensure_token(self) -> str:
        with self._token_lock:
            if self._access_token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
                return self._access_token

            if self._refresh_token:
                try:
                    self._refresh()
                    return self._access_token
                except (requests.RequestException, GranolaError, KeyError, ValueError) as e:
                    logger.warning(f"Granola token refresh failed, falling back to local credentials: {e}")

            local = read_local_tokens(self.granola_dir)
            self._access_token = local['access_token']
            self._refresh_token = local['refresh_token']
            self._client_id = local['client_id']
            # Assume an hour of validity for tokens read from disk
            self._expires_at = time.time() + 3600
            return self._access_token

    def _post(self, path: str, body: dict) -> requests.Response:
        token = self._ensure_token()
        headers = {
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
            'Accept': '*/*',
            'User-Agent': USER_AGENT,
            'X-Client-Version': CLIENT_VERSION,
        }
        try:
            return self.session.post(f"{GRANOLA_API}{path}", headers=headers, json=body,
                                     timeout=REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise GranolaError(f"Granola request to {path} failed: {e}") from e

    def fetch_documents(self, limit: int = 100, offset: int = 0) -> list[NotesDocument]:
        """Most recent documents first."""
        resp = self._post('/v2/get-documents', {
            'limit': limit,
            'offset': offset,
            'include_last_viewed_panel': True,
        })
        if resp.status_code != 200:
            raise GranolaError(f"Granola API error ({resp.status_code}): {resp.text.strip()}")
        documents = []
        for d in resp.json().get('docs') or []:
            if not d.get('id'):
                continue
            try:
                documents.append(document_from_api(d))
            except (ValueError, AttributeError) as e:
                logger.warning(f"Skipping Granola doc {d['id']} with bad timestamps: {e}")
        return documents

    def fetch_transcript(self, document_id: str) -> list[dict]:
        resp = self._post('/v1/get-document-transcript', {'document_id': document_id})
        if resp.status_code == 404:
            return []
        if resp.status_code != 200:
            logger.warning(f"Failed to fetch transcript for {document_id}: {resp.status_code}")
            return []
        data = resp.json()
        return data if isinstance(data, list) else []

    def fetch_meeting(self, doc: NotesDocument) -> MeetingContent:
        """Notes panel and transcript for a document. Either may be empty."""
        panel = (doc.raw.get('last_viewed_panel') or {}).get('content')
        notes_markdown = prosemirror_to_markdown(panel).strip() if panel else ''
        transcript = format_transcript(self.fetch_transcript(doc.id))
        return MeetingContent(
            id=doc.id,
            title=doc.title,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            notes_markdown=notes_markdown,
            transcript=transcript,
        )
