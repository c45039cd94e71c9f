from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import quote

from dynamic_image_style.errors import NotFound
from dynamic_image_style.plan import DerivationPlan


def normalize_identity(file_id: Optional[str]) -> str:
    """
    Validate a source identity (a relative POSIX path below the files root).
    Empty, absolute, or parent-escaping identities are treated as not found.
    """
    if not file_id:
        raise NotFound("Empty source file identity.")
    p = PurePosixPath(str(file_id).replace("\\", "/"))
    if p.is_absolute() or any(part in ("..", "") for part in p.parts) or str(p) == ".":
        raise NotFound(f"Invalid source file identity {file_id!r}.")
    return str(p)


class DerivativeStore:
    """
    Maps (source identity, plan) to filesystem paths and public URLs.

        files_root/
          └─ {file_id}                               (source images)
        styles_root/
          └─ dynamic_{token}/
              └─ {file_id}.{extension}               (derivatives)
    """

    def __init__(self, files_root: str = "data/files", styles_root: str = "data/styles", styles_url: str = "/styles"):
        self.files_root = Path(files_root)
        self.styles_root = Path(styles_root)
        self.styles_url = "/" + styles_url.strip("/")

    def source_path(self, file_id: str) -> Path:
        return self.files_root / normalize_identity(file_id)

    def derivative_relpath(self, file_id: str, plan: DerivationPlan) -> str:
        return f"{plan.name}/{normalize_identity(file_id)}.{plan.extension}"

    def derivative_path(self, file_id: str, plan: DerivationPlan) -> Path:
        return self.styles_root / self.derivative_relpath(file_id, plan)

    def derivative_url(self, file_id: str, plan: DerivationPlan) -> str:
        return f"{self.styles_url}/{quote(self.derivative_relpath(file_id, plan))}"
