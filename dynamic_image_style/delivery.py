from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol
from urllib.parse import quote

from dynamic_image_style.errors import Forbidden, NotFound
from dynamic_image_style.generator import DerivativeGenerator
from dynamic_image_style.plan import build_plan
from dynamic_image_style.store import DerivativeStore, normalize_identity
from dynamic_image_style.valid_cache import ValidityCache

if TYPE_CHECKING:  # pragma: no cover
    from dynamic_image_style.config import AppConfig

log = logging.getLogger(__name__)

DEFAULT_ROUTE_PREFIX = "/dynamic-image-style"


class SourceFetcher(Protocol):
    def fetch(self, file_id: str, dest: Path) -> Optional[Path]:
        ...


@dataclass(frozen=True)
class Delivery:
    """What the HTTP host needs to answer a successful request."""
    path: Path
    body: bytes
    content_type: str
    created: bool

    @property
    def content_length(self) -> int:
        return len(self.body)

    @property
    def headers(self) -> dict:
        # Derivatives never change once published
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self.content_length),
            "Cache-Control": "public, max-age=31536000",
            "X-Derivative-Created": "1" if self.created else "0",
        }


class DeliveryGate:
    """
    Per-request orchestration:

        validate token → resolve source (optional remote fetch) → generate if
        absent → return bytes

    The allow-list check runs before any parsing so rejected requests stay cheap.
    """

    def __init__(
        self,
        validity: ValidityCache,
        store: DerivativeStore,
        generator: DerivativeGenerator,
        fetcher: Optional[SourceFetcher] = None,
        route_prefix: str = DEFAULT_ROUTE_PREFIX,
    ):
        self.validity = validity
        self.store = store
        self.generator = generator
        self.fetcher = fetcher
        self.route_prefix = "/" + route_prefix.strip("/")

    def build_url(self, file_id: str, token: str) -> str:
        return f"{self.route_prefix}/{quote(normalize_identity(file_id))}/{quote(token)}"

    def resolve_source(self, file_id: str) -> Path:
        source = self.store.source_path(file_id)
        if source.is_file():
            return source
        if self.fetcher is None:
            raise NotFound(f"Could not find source file {file_id}.")
        fetched = self.fetcher.fetch(file_id, source)
        if fetched is None or not Path(fetched).is_file():
            raise NotFound(f"Could not find source file {file_id}.")
        return Path(fetched)

    def deliver(self, file_id: str, token: str) -> Delivery:
        if not self.validity.is_valid(token):
            log.info("Rejected unregistered settings", extra={"extra": {"settings": token, "file": file_id}})
            raise Forbidden("Invalid image style settings.")

        plan = build_plan(token)
        source = self.resolve_source(file_id)
        target = self.store.derivative_path(file_id, plan)
        derivative = self.generator.ensure(source, target, plan)
        return Delivery(
            path=derivative.path,
            body=derivative.read_bytes(),
            content_type=derivative.mime_type,
            created=derivative.created,
        )


def gate_from_config(cfg: "AppConfig") -> DeliveryGate:
    """Wire cache backend, store, generator and the optional staging proxy from params."""
    from dynamic_image_style.cache_backends import make_backend
    from dynamic_image_style.proxy import StageFileProxy

    backend = make_backend(cfg.cache.backend, path=cfg.cache.path, redis_url=cfg.cache.redis_url)
    fetcher = None
    if cfg.proxy.enabled:
        fetcher = StageFileProxy(
            origin=cfg.proxy.origin,
            origin_dir=cfg.proxy.origin_dir,
            local_dir=cfg.storage.files_root,
            verify=cfg.proxy.verify,
            timeout=cfg.proxy.timeout,
        )
    return DeliveryGate(
        validity=ValidityCache(backend, key=cfg.cache.key),
        store=DerivativeStore(cfg.storage.files_root, cfg.storage.styles_root, cfg.storage.styles_url),
        generator=DerivativeGenerator(cfg.image.webp_quality, cfg.image.max_dimension),
        fetcher=fetcher,
        route_prefix=cfg.server.route_prefix,
    )
