from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from dynamic_image_style.settings import (
    ParsedSettings,
    ResolvedDimensions,
    parse_settings,
    resolve_dimensions,
)

SCALE = "scale"
SCALE_AND_CROP = "scale_and_crop"
CONVERT = "convert"

DEFAULT_FORMAT = "webp"

MIME_TYPES = {
    "webp": "image/webp",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
}


@dataclass(frozen=True)
class Step:
    """One transform. `params` is a sorted tuple of (name, value) pairs so steps stay hashable."""
    kind: str
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def make(cls, kind: str, **params: Any) -> "Step":
        return cls(kind=kind, params=tuple(sorted(params.items())))

    def param(self, name: str, default: Any = None) -> Any:
        return dict(self.params).get(name, default)

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "params": dict(self.params)}


@dataclass(frozen=True)
class DerivationPlan:
    """
    Ordered transform pipeline compiled from a settings string.

    Shape: at most one resize step (scale | scale_and_crop), then exactly one
    convert step.
    """
    token: str
    steps: Tuple[Step, ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        # Machine name of the style; also the derivative directory name.
        return f"dynamic_{self.token}"

    @property
    def resize(self) -> Optional[Step]:
        for s in self.steps:
            if s.kind in (SCALE, SCALE_AND_CROP):
                return s
        return None

    @property
    def extension(self) -> str:
        return str(self.steps[-1].param("extension", DEFAULT_FORMAT))

    @property
    def mime_type(self) -> str:
        return MIME_TYPES.get(self.extension, "application/octet-stream")

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "steps": [s.as_dict() for s in self.steps]}


def plan_from_dimensions(token: str, dims: ResolvedDimensions, extension: str = DEFAULT_FORMAT) -> DerivationPlan:
    steps = []
    if dims.width is not None and dims.height is not None:
        steps.append(Step.make(SCALE_AND_CROP, width=dims.width, height=dims.height, anchor="center-center"))
    elif dims.width is not None:
        steps.append(Step.make(SCALE, width=dims.width, upscale=True))
    elif dims.height is not None:
        steps.append(Step.make(SCALE, height=dims.height, upscale=True))
    steps.append(Step.make(CONVERT, extension=extension))
    return DerivationPlan(token=token, steps=tuple(steps))


def plan_from_settings(token: str, settings: ParsedSettings) -> DerivationPlan:
    return plan_from_dimensions(token, resolve_dimensions(settings))


def build_plan(token: str) -> DerivationPlan:
    """Parse + resolve + plan. Raises InvalidToken on any grammar or dimension error."""
    return plan_from_settings(token, parse_settings(token))
