"""
Document Store gateway.

Evidence files attached on submit go through this module. Contract:

    store(data: bytes, name: str) -> url

The returned URL is stable; the workflow only writes it to the task after
``store`` has returned. Any backend failure is raised as
``UpstreamUnavailable`` so the submit is rejected and can be retried.

Backends:
  - LocalDocumentStore: files under UPLOAD_FOLDER (development, tests)
  - HttpDocumentStore:  PUT to an object-storage HTTP endpoint via requests

Testability: pass a mock ``session`` to HttpDocumentStore(), or put any
object with a ``store`` method in ``app.extensions["document_store"]``.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass

import requests
from flask import current_app
from werkzeug.utils import secure_filename

from compliance_desk.core.exceptions import UpstreamUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_DEFAULT_MAX_BYTES = 10 * 1024 * 1024
_DEFAULT_EXTENSIONS = frozenset({"pdf", "doc", "docx", "xls", "xlsx"})


@dataclass
class DocumentUpload:
    """An evidence file received with a submit."""
    filename: str
    content: bytes
    content_type: str | None = None


def validate_document(name: str, data: bytes, *, allowed=None, max_bytes=None) -> str:
    """Check extension and size; return the sanitised file name."""
    allowed = allowed or _DEFAULT_EXTENSIONS
    max_bytes = max_bytes or _DEFAULT_MAX_BYTES
    safe = secure_filename(name or "")
    ext = safe.rsplit(".", 1)[-1].lower() if "." in safe else ""
    if ext not in allowed:
        raise ValidationFailed(
            f"File type '.{ext}' is not allowed",
            details={"document": f"allowed: {', '.join(sorted(allowed))}"},
        )
    if not data:
        raise ValidationFailed("Document is empty", details={"document": "empty"})
    if len(data) > max_bytes:
        raise ValidationFailed(
            f"Document exceeds {max_bytes // (1024 * 1024)} MB",
            details={"document": "too_large"},
        )
    return safe


def _object_key(safe_name: str) -> str:
    return f"{time.strftime('%Y/%m')}/{uuid.uuid4().hex[:12]}-{safe_name}"


class LocalDocumentStore:
    """Writes documents to a local folder and serves them under ``public_base_url``."""

    def __init__(self, root: str, public_base_url: str = "/documents") -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def store(self, data: bytes, name: str) -> str:
        key = _object_key(name)
        path = os.path.join(self.root, *key.split("/"))
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.error("Local document write failed path=%s: %s", path, exc)
            raise UpstreamUnavailable("document store", str(exc)) from exc
        logger.info("Document stored key=%s bytes=%d", key, len(data))
        return f"{self.public_base_url}/{key}"


class HttpDocumentStore:
    """Object storage over HTTP (PUT ``{base_url}/{bucket}/{key}``)."""

    def __init__(
        self,
        base_url: str,
        bucket: str,
        api_key: str = "",
        public_base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.public_base_url = (public_base_url or f"{self.base_url}/{bucket}").rstrip("/")
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def store(self, data: bytes, name: str) -> str:
        key = _object_key(name)
        url = f"{self.base_url}/{self.bucket}/{key}"
        headers = {"Content-Type": "application/octet-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        start = time.monotonic()
        try:
            resp = self.session.put(url, data=data, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Document upload failed key=%s duration_ms=%d: %s", key, duration_ms, exc)
            raise UpstreamUnavailable("document store", str(exc)) from exc
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Document uploaded key=%s bytes=%d duration_ms=%d", key, len(data), duration_ms)
        return f"{self.public_base_url}/{key}"


def build_document_store(config) -> LocalDocumentStore | HttpDocumentStore:
    backend = (config.get("DOCUMENT_STORE_BACKEND") or "local").lower()
    if backend == "http":
        if not config.get("DOCUMENT_STORE_URL"):
            raise RuntimeError("DOCUMENT_STORE_URL is required for the http document store")
        return HttpDocumentStore(
            base_url=config["DOCUMENT_STORE_URL"],
            bucket=config.get("DOCUMENT_STORE_BUCKET", "compliance-documents"),
            api_key=config.get("DOCUMENT_STORE_API_KEY", ""),
            public_base_url=config.get("DOCUMENT_PUBLIC_BASE_URL") or None,
        )
    return LocalDocumentStore(
        root=config["UPLOAD_FOLDER"],
        public_base_url=config.get("DOCUMENT_PUBLIC_BASE_URL") or "/documents",
    )


def init_document_store(app) -> None:
    app.extensions["document_store"] = build_document_store(app.config)
    app.logger.info("Document store backend=%s", app.config.get("DOCUMENT_STORE_BACKEND", "local"))


def get_document_store():
    return current_app.extensions["document_store"]


def store_document(upload: DocumentUpload, store=None) -> str:
    """Validate ``upload`` and persist it; returns the stable URL."""
    cfg = current_app.config
    safe = validate_document(
        upload.filename,
        upload.content,
        allowed=cfg.get("ALLOWED_DOCUMENT_EXTENSIONS"),
        max_bytes=cfg.get("MAX_DOCUMENT_BYTES"),
    )
    return (store or get_document_store()).store(upload.content, safe)
