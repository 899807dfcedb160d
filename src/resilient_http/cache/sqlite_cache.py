from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Mapping, Optional

from resilient_http.cache.base import conditional_patch, is_cacheable, validators_of
from resilient_http.http.response import HttpResponse
from resilient_http.utils.logging import get_logger
from resilient_http.utils.time import utc_now_iso


class SQLiteResponseCache:
    """SQLite-backed response cache, one row per URL."""

    def __init__(self, path: str):
        self.path = path
        self.log = get_logger("resilient_http.cache")
        self._ensure_parent_dir(path)
        self._ensure_schema()

    def add_headers(self, url: str, headers: Mapping[str, str]) -> Dict[str, str]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT etag, last_modified FROM response_cache WHERE url = ?",
                (url,),
            ).fetchone()

        if not row:
            return {}

        validators: Dict[str, str] = {}
        if row["etag"]:
            validators["If-None-Match"] = row["etag"]
        if row["last_modified"]:
            validators["If-Modified-Since"] = row["last_modified"]
        return conditional_patch(validators, headers)

    def store_response(self, response: HttpResponse) -> None:
        if not is_cacheable(response):
            return

        validators = validators_of(response)
        headers_json = json.dumps(dict(response.headers), ensure_ascii=False, sort_keys=True)
        now = utc_now_iso()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO response_cache
                (url, status_code, reason, headers_json, body_text, etag, last_modified, stored_at_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET
                    status_code = excluded.status_code,
                    reason = excluded.reason,
                    headers_json = excluded.headers_json,
                    body_text = excluded.body_text,
                    etag = excluded.etag,
                    last_modified = excluded.last_modified,
                    stored_at_utc = excluded.stored_at_utc
                """,
                (
                    response.url,
                    int(response.status_code),
                    response.reason,
                    headers_json,
                    response.text,
                    validators.get("If-None-Match"),
                    validators.get("If-Modified-Since"),
                    now,
                ),
            )

    def load_response(self, response: HttpResponse) -> Optional[HttpResponse]:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT status_code, reason, headers_json, body_text
                FROM response_cache
                WHERE url = ?
                """,
                (response.url,),
            ).fetchone()

        if not row:
            return None

        try:
            headers = json.loads(row["headers_json"] or "{}")
        except ValueError:
            self.log.warning("Discarding unreadable cached headers for %s", response.url)
            headers = {}

        text = str(row["body_text"] or "")
        js = None
        if "application/json" in str(headers.get("Content-Type", headers.get("content-type", ""))).lower():
            try:
                js = json.loads(text)
            except ValueError:
                js = None

        return HttpResponse(
            status_code=int(row["status_code"]),
            headers=headers,
            text=text,
            json=js,
            url=response.url,
            reason=str(row["reason"] or ""),
            from_cache=True,
        )

    def clear(self) -> None:
        with self._session() as conn:
            conn.execute("DELETE FROM response_cache")

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS response_cache (
                    url TEXT PRIMARY KEY,
                    status_code INTEGER NOT NULL,
                    reason TEXT,
                    headers_json TEXT NOT NULL,
                    body_text TEXT NOT NULL,
                    etag TEXT,
                    last_modified TEXT,
                    stored_at_utc TEXT NOT NULL
                )
                """
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self):
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
