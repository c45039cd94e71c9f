from __future__ import annotations

"""
Staging file proxy (optional source fetcher for the delivery gate).

On staging/dev environments the source images usually live only on the
production origin. When a source is missing locally, the gate asks this
fetcher to download it from `<origin>/<origin_dir>/<file_id>` and store it
under the local files root, after which generation proceeds as usual.

Usage:
    proxy = StageFileProxy(origin="https://www.example.com", origin_dir="sites/default/files")
    path = proxy.fetch("2024/hero.jpg", Path("data/files/2024/hero.jpg"))
    if path:
        ...
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

import requests


log = logging.getLogger(__name__)


class StageFileProxy:
    def __init__(
        self,
        origin: str,
        origin_dir: str = "",
        local_dir: str = "data/files",
        verify: Union[bool, str] = True,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            origin: base URL of the origin site, e.g. https://www.example.com
            origin_dir: public files directory on the origin; falls back to
                        the name of the local files directory
            local_dir: local files root (only used for the origin_dir fallback)
            verify: TLS verification flag or CA bundle path, passed to requests
            timeout: per-request timeout in seconds
            session: optional requests.Session for connection reuse
        """
        if not origin:
            raise ValueError("Stage file proxy requires an origin URL.")
        self.origin = origin.rstrip("/")
        self.origin_dir = (origin_dir or "").strip().strip("/") or Path(local_dir).name
        self.verify = verify
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def build_url(self, file_id: str) -> str:
        return f"{self.origin}/{self.origin_dir}/{quote(file_id.lstrip('/'))}"

    def fetch(self, file_id: str, dest: Path) -> Optional[Path]:
        """
        Download `file_id` from the origin into `dest`.
        Returns the local path on success, None on any failure (logged).
        """
        url = self.build_url(file_id)
        try:
            r = self.session.get(url, timeout=self.timeout, verify=self.verify)
            if r.status_code != 200 or not r.content:
                log.warning("Stage file proxy fetch failed: %s %s", r.status_code, url)
                return None
            self._write(Path(dest), r.content)
            log.info("Fetched source from origin", extra={"extra": {"url": url, "bytes": len(r.content)}})
            return Path(dest)
        except requests.RequestException as e:
            log.warning("Stage file proxy error for %s: %s", url, e)
            return None
        except OSError:
            log.exception("Could not store fetched source %s", dest)
            return None

    @staticmethod
    def _write(dest: Path, content: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(dest.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp, dest)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)
