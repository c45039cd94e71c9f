"""
Dynamic Image Style — on-demand image derivatives from compact settings strings

- settings.py: `w200_h100_x2` grammar → parsed settings → resolved dimensions
- plan.py: resolved dimensions → DerivationPlan (scale | scale_and_crop, then convert to WebP)
- valid_cache.py: allow-list of settings minted by templates (DoS gate)
- generator.py: render + atomically publish derivatives, once per (file, settings)
- delivery.py: request orchestration used by server.py (FastAPI) and templating.py (Jinja2)
"""
from .errors import (
    DynamicImageStyleError,
    Forbidden,
    InvalidPlan,
    InvalidToken,
    NotFound,
    SourceUnreadable,
    StorageFailure,
)
from .plan import DerivationPlan, Step, build_plan
from .settings import ResolvedDimensions, parse_settings, resolve_dimensions
from .valid_cache import ValidityCache

__all__ = [
    "DerivationPlan",
    "DynamicImageStyleError",
    "Forbidden",
    "InvalidPlan",
    "InvalidToken",
    "NotFound",
    "ResolvedDimensions",
    "SourceUnreadable",
    "Step",
    "StorageFailure",
    "ValidityCache",
    "build_plan",
    "parse_settings",
    "resolve_dimensions",
]
