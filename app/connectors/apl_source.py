"""
app/connectors/apl_source.py

Source adapter: downloads (or reads) a jurisdiction's raw APL file and
fingerprints it. Any failure surfaces as FetchError before transformation.

``check_for_update`` is the cheap pre-check: a HEAD request whose ETag or
Last-Modified header is compared with the values stored after the last
persisted download. It never fails a run; when the answer is unknown the
caller downloads.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import requests

from app.config import APLSourceSettings, get_apl_source_settings
from app.errors import FetchError
from app.jurisdictions import JurisdictionConfig

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class SourceVersion:
    """
    HTTP validators identifying one published revision of a source file.
    """

    etag: str | None = None
    last_modified: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.etag is None and self.last_modified is None


@dataclass(frozen=True)
class UpdateCheck:
    state: str
    has_update: bool
    reason: str
    version: SourceVersion | None = None
    content_length: int | None = None


@dataclass(frozen=True)
class SourceFetchResult:
    """
    Raw source bytes plus their content fingerprint.
    """

    state: str
    content: bytes
    fingerprint: str
    source_uri: str
    fetched_at: datetime
    version: SourceVersion | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.content)


def compute_fingerprint(content: bytes) -> str:
    """
    SHA-256 hex digest of the file content.
    """

    return hashlib.sha256(content).hexdigest()


def _version_from_headers(headers: Mapping[str, str] | None) -> SourceVersion | None:
    if not headers:
        return None
    etag = (headers.get("ETag") or "").strip().strip('"') or None
    last_modified = (headers.get("Last-Modified") or "").strip() or None
    version = SourceVersion(etag=etag, last_modified=last_modified)
    return None if version.is_empty else version


class APLSourceAdapter:
    """
    Fetches APL files over HTTP with bounded retries, or from a local override.
    """

    def __init__(
        self,
        *,
        settings: APLSourceSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        resolved = settings or get_apl_source_settings()
        self._session = session or requests.Session()
        self._timeout_seconds = resolved.timeout_seconds
        self._max_retries = resolved.max_retries
        self._backoff_initial_seconds = resolved.backoff_initial_seconds
        self._backoff_multiplier = resolved.backoff_multiplier
        self._user_agent = resolved.user_agent

    def fetch(self, config: JurisdictionConfig) -> SourceFetchResult:
        """
        Return the jurisdiction's raw file bytes and fingerprint.
        """

        version: SourceVersion | None = None
        if config.reads_local_file:
            content = self._read_local(config)
            source_uri = str(Path(config.local_file_path or "").resolve())
        elif config.download_url:
            response = self._download(config)
            content = response.content
            version = _version_from_headers(response.headers)
            source_uri = config.download_url
        else:
            raise FetchError(
                f"{config.state}: no download URL or local file path configured.",
                state=config.state,
            )

        if not content:
            raise FetchError(f"{config.state}: source file is empty.", state=config.state)

        fingerprint = compute_fingerprint(content)
        logger.info(
            "APL fetch complete state=%s bytes=%s fingerprint=%s source=%s",
            config.state,
            len(content),
            fingerprint[:12],
            source_uri,
        )
        return SourceFetchResult(
            state=config.state,
            content=content,
            fingerprint=fingerprint,
            source_uri=source_uri,
            fetched_at=datetime.now(timezone.utc),
            version=version,
        )

    def check_for_update(
        self,
        config: JurisdictionConfig,
        previous: SourceVersion | None,
    ) -> UpdateCheck:
        """
        HEAD the source and compare its validators with ``previous``.

        ETag wins over Last-Modified when both sides carry one. Local files,
        missing validators, and any HEAD failure all report an update so the
        caller falls through to a full download.
        """

        if config.reads_local_file or not config.download_url:
            return UpdateCheck(state=config.state, has_update=True, reason="local_file")
        if previous is None or previous.is_empty:
            return UpdateCheck(state=config.state, has_update=True, reason="no_stored_version")

        try:
            response = self._session.head(
                config.download_url,
                headers={"User-Agent": self._user_agent},
                timeout=self._timeout_seconds,
                allow_redirects=True,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "APL update check failed state=%s url=%s error=%s",
                config.state,
                config.download_url,
                exc,
            )
            return UpdateCheck(state=config.state, has_update=True, reason="check_failed")

        current = _version_from_headers(response.headers)
        content_length = response.headers.get("Content-Length")
        length = int(content_length) if content_length and content_length.isdigit() else None

        if current is None:
            reason, has_update = "no_remote_version", True
        elif current.etag and previous.etag:
            has_update = current.etag != previous.etag
            reason = "etag_changed" if has_update else "etag_unchanged"
        elif current.last_modified and previous.last_modified:
            has_update = current.last_modified != previous.last_modified
            reason = "last_modified_changed" if has_update else "last_modified_unchanged"
        else:
            reason, has_update = "validators_incomparable", True

        logger.info(
            "APL update check state=%s has_update=%s reason=%s etag=%s last_modified=%s",
            config.state,
            has_update,
            reason,
            current.etag if current else None,
            current.last_modified if current else None,
        )
        return UpdateCheck(
            state=config.state,
            has_update=has_update,
            reason=reason,
            version=current,
            content_length=length,
        )

    def _read_local(self, config: JurisdictionConfig) -> bytes:
        path = Path(config.local_file_path or "")
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.error("APL local file unreadable state=%s path=%s error=%s", config.state, path, exc)
            raise FetchError(f"{config.state}: cannot read local APL file {path}.", state=config.state) from exc

    def _download(self, config: JurisdictionConfig) -> requests.Response:
        """
        GET the source URL with exponential backoff on transient failures.
        """

        url = config.download_url or ""
        headers = {"User-Agent": self._user_agent}
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = self._session.get(url, headers=headers, timeout=self._timeout_seconds)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "APL download failed state=%s status=%s url=%s error=%s",
                        config.state,
                        status_code,
                        url,
                        exc,
                    )
                    raise FetchError(
                        f"{config.state}: failed to download APL file: HTTP {status_code}",
                        state=config.state,
                        status_code=status_code,
                    ) from exc
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
            logger.warning(
                "APL download retry state=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                config.state,
                attempt + 1,
                self._max_retries,
                backoff_seconds,
                url,
            )
            time.sleep(backoff_seconds)

        logger.error(
            "APL download exhausted retries state=%s url=%s error=%s",
            config.state,
            url,
            last_error,
        )
        status_code = None
        if isinstance(last_error, requests.HTTPError) and last_error.response is not None:
            status_code = last_error.response.status_code
        raise FetchError(
            f"{config.state}: APL download failed after retries: {last_error}",
            state=config.state,
            status_code=status_code,
        ) from last_error
