from __future__ import annotations

"""
Derivative generator: decode source → apply plan steps → encode → publish.

Publishing writes to a temp file next to the target and renames it into
place, so readers only ever see complete derivatives. Within one process a
per-target lock makes concurrent callers wait for the first one instead of
rendering the same derivative twice.
"""

import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import cv2
import numpy as np

from dynamic_image_style.errors import InvalidPlan, SourceUnreadable, StorageFailure
from dynamic_image_style.plan import CONVERT, SCALE, SCALE_AND_CROP, DerivationPlan, Step

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Derivative:
    path: Path
    mime_type: str
    created: bool

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    def read_bytes(self) -> bytes:
        with self.path.open("rb") as f:
            return f.read()


def _resize(img: np.ndarray, width: int, height: int) -> np.ndarray:
    h0, w0 = img.shape[:2]
    shrinking = width * height < w0 * h0
    interp = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
    return cv2.resize(img, (width, height), interpolation=interp)


def scale(img: np.ndarray, width: Optional[int] = None, height: Optional[int] = None, upscale: bool = False) -> np.ndarray:
    """Keep aspect ratio; fit to the given width or height (or both, as a bounding box)."""
    h0, w0 = img.shape[:2]
    factors: List[float] = []
    if width:
        factors.append(width / w0)
    if height:
        factors.append(height / h0)
    if not factors:
        return img
    f = min(factors)
    if f > 1.0 and not upscale:
        return img
    new_w = max(1, int(round(w0 * f)))
    new_h = max(1, int(round(h0 * f)))
    if (new_w, new_h) == (w0, h0):
        return img
    return _resize(img, new_w, new_h)


def scale_and_crop(img: np.ndarray, width: int, height: int, anchor: str = "center-center") -> np.ndarray:
    """Cover the target box, then crop the overflow around the anchor."""
    h0, w0 = img.shape[:2]
    f = max(width / w0, height / h0)
    new_w = max(width, int(round(w0 * f)))
    new_h = max(height, int(round(h0 * f)))
    if (new_w, new_h) != (w0, h0):
        img = _resize(img, new_w, new_h)

    horizontal, _, vertical = anchor.partition("-")
    x = {"left": 0, "right": new_w - width}.get(horizontal, int(round((new_w - width) / 2.0)))
    y = {"top": 0, "bottom": new_h - height}.get(vertical or horizontal, int(round((new_h - height) / 2.0)))
    out = img[y:y + height, x:x + width]
    if out.shape[0] != height or out.shape[1] != width:
        raise InvalidPlan(f"Crop {width}x{height} at ({x},{y}) does not fit a {new_w}x{new_h} image.")
    return out


class DerivativeGenerator:
    def __init__(self, webp_quality: int = 75, max_dimension: int = 10000):
        self.webp_quality = int(webp_quality)
        self.max_dimension = int(max_dimension)
        self._locks: Dict[str, list] = {}
        self._guard = threading.Lock()

    # -------- public API --------

    def ensure(self, source: Path, target: Path, plan: DerivationPlan) -> Derivative:
        """
        Return the derivative at `target`, rendering it from `source` first if
        it does not exist yet. Existing derivatives are never regenerated.
        """
        target = Path(target)
        if target.is_file():
            return Derivative(path=target, mime_type=plan.mime_type, created=False)

        with self._target_lock(str(target)):
            if target.is_file():
                return Derivative(path=target, mime_type=plan.mime_type, created=False)
            t0 = time.perf_counter()
            data = self.render(Path(source), plan)
            self._publish(target, data)
            log.info(
                "Derivative generated",
                extra={"extra": {
                    "style": plan.name,
                    "target": str(target),
                    "bytes": len(data),
                    "ms": round((time.perf_counter() - t0) * 1e3, 2),
                }},
            )
        return Derivative(path=target, mime_type=plan.mime_type, created=True)

    def render(self, source: Path, plan: DerivationPlan) -> bytes:
        """Decode, transform and encode; no filesystem writes."""
        img = cv2.imread(str(source), cv2.IMREAD_UNCHANGED)
        if img is None or img.size == 0:
            raise SourceUnreadable(f"Cannot decode source image {source}.")
        if img.dtype == np.uint16:
            img = (img // 257).astype(np.uint8)
        elif img.dtype != np.uint8:
            img = cv2.normalize(img, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)

        extension = plan.extension
        for step in plan.steps:
            if step.kind == CONVERT:
                extension = str(step.param("extension", extension))
            else:
                img = self.apply_step(img, step)
        return self._encode(img, extension)

    def apply_step(self, img: np.ndarray, step: Step) -> np.ndarray:
        width = step.param("width")
        height = step.param("height")
        for value in (width, height):
            if value is not None and not (0 < int(value) <= self.max_dimension):
                raise InvalidPlan(f"Dimension {value} outside 1..{self.max_dimension}.")
        if step.kind == SCALE:
            return scale(img, width=width, height=height, upscale=bool(step.param("upscale", False)))
        if step.kind == SCALE_AND_CROP:
            if width is None or height is None:
                raise InvalidPlan("scale_and_crop needs both width and height.")
            return scale_and_crop(img, int(width), int(height), anchor=step.param("anchor", "center-center"))
        raise InvalidPlan(f"Unsupported step {step.kind!r}.")

    # -------- internals --------

    def _encode(self, img: np.ndarray, extension: str) -> bytes:
        ext = extension.lower().lstrip(".")
        params: List[int] = []
        if ext == "webp":
            params = [cv2.IMWRITE_WEBP_QUALITY, self.webp_quality]
        elif ext in ("jpg", "jpeg"):
            params = [cv2.IMWRITE_JPEG_QUALITY, self.webp_quality]
            if img.ndim == 3 and img.shape[2] == 4:
                img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
        try:
            ok, buf = cv2.imencode(f".{ext}", img, params)
        except cv2.error as e:
            raise InvalidPlan(f"Cannot encode derivative as {ext}: {e}") from e
        if not ok:
            raise InvalidPlan(f"Cannot encode derivative as {ext}.")
        return buf.tobytes()

    def _publish(self, target: Path, data: bytes) -> None:
        tmp = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp-", suffix=target.suffix)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
            tmp = None
        except OSError as e:
            log.exception("Failed to write derivative %s", target)
            raise StorageFailure(f"Cannot write derivative {target}: {e}") from e
        finally:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)

    @contextmanager
    def _target_lock(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)
