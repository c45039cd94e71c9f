from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_CONFIG_PATH = "config/params.yaml"


@dataclass
class StorageConfig:
    files_root: str = "data/files"
    styles_root: str = "data/styles"
    styles_url: str = "/styles"


@dataclass
class CacheConfig:
    backend: str = "memory"          # memory | file | redis
    path: str = "data/cache"         # file backend directory
    redis_url: str = "redis://localhost:6379/0"
    key: str = "dynamic_image_style:valid_settings"


@dataclass
class ImageConfig:
    webp_quality: int = 75
    max_dimension: int = 10000


@dataclass
class ProxyConfig:
    enabled: bool = False
    origin: str = ""
    origin_dir: str = ""
    verify: Union[bool, str] = True
    timeout: float = 30.0


@dataclass
class ServerConfig:
    route_prefix: str = "/dynamic-image-style"
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, D: Optional[Dict[str, Any]]) -> "AppConfig":
        """
        Build from a params dict (missing sections/keys keep their defaults).
        Expected layout:
            storage: {files_root, styles_root, styles_url}
            cache:   {backend, path, redis_url, key}
            image:   {webp_quality, max_dimension}
            proxy:   {enabled, origin, origin_dir, verify, timeout}
            server:  {route_prefix, host, port}
        """
        D = D or {}

        def section(name: str, klass):
            raw = D.get(name) or {}
            known = {k: v for k, v in raw.items() if k in klass.__dataclass_fields__}
            return klass(**known)

        return cls(
            storage=section("storage", StorageConfig),
            cache=section("cache", CacheConfig),
            image=section("image", ImageConfig),
            proxy=section("proxy", ProxyConfig),
            server=section("server", ServerConfig),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load YAML params. Path precedence: argument, env DIS_CONFIG, config/params.yaml.
    A missing file yields the built-in defaults.
    """
    path = path or os.environ.get("DIS_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return AppConfig()
    with open(path, "r") as f:
        return AppConfig.from_dict(yaml.safe_load(f))
