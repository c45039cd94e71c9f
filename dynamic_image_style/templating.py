from __future__ import annotations

"""
Jinja2 filters that mint derivative URLs.

    {{ "2024/hero.jpg" | dynamic_image_style_url("w640_r16x9") }}
    <img src="..." srcset="{{ file | dynamic_image_style_source('w320', [2, 3]) }}">
    {{ "2024/hero.jpg" | dis("w200_h200") }}

Every settings string that ends up in a delivery URL is registered in the
validity cache; the delivery gate refuses anything else.
"""

import logging
from typing import Optional, Sequence, Union

from jinja2 import Environment

from dynamic_image_style.delivery import DeliveryGate
from dynamic_image_style.errors import DynamicImageStyleError
from dynamic_image_style.plan import build_plan

log = logging.getLogger(__name__)


def _fmt_multiplier(m: Union[int, float, str]) -> str:
    f = float(m)
    return str(int(f)) if f.is_integer() else str(f)


class DynamicImageStyleFilters:
    def __init__(self, gate: DeliveryGate):
        self.gate = gate

    @property
    def validity(self):
        return self.gate.validity

    def dynamic_image_style(self, file_id: Optional[str], settings: str) -> Optional[str]:
        """Build the derivative right away and return its public URL."""
        if not file_id:
            log.warning("Image path is empty.")
            return None
        try:
            plan = build_plan(settings)
            source = self.gate.resolve_source(file_id)
            self.gate.generator.ensure(source, self.gate.store.derivative_path(file_id, plan), plan)
            return self.gate.store.derivative_url(file_id, plan)
        except DynamicImageStyleError as e:
            log.warning("Could not apply image style %s: %s", settings, e.message)
            return None

    def dynamic_image_style_url(self, file_id: Optional[str], settings: str) -> Optional[str]:
        """Delivery URL for (file, settings); the derivative is built on first request."""
        if not file_id:
            log.warning("Image file is empty.")
            return None
        url = self.gate.build_url(file_id, settings)
        self.validity.register(settings)
        return url

    def dynamic_image_style_source(
        self,
        file_id: Optional[str],
        settings: str,
        multipliers: Sequence[Union[int, float]] = (2,),
    ) -> Optional[str]:
        """
        srcset value: the 1x variant plus one entry per multiplier.

        The multiplier scales the width, so height-only settings (`h100`) mint
        tokens that register fine but are rejected with InvalidToken on delivery.
        """
        if not file_id:
            log.warning("Image file is empty.")
            return None

        tokens = [f"{settings}_1x"]
        entries = [f"{self.gate.build_url(file_id, tokens[0])} 1x"]
        for m in multipliers:
            suffix = f"{_fmt_multiplier(m)}x"
            token = f"{settings}_{suffix}"
            tokens.append(token)
            entries.append(f"{self.gate.build_url(file_id, token)} {suffix}")

        self.validity.register_many(tokens)
        return ", ".join(entries)

    def install(self, env: Environment) -> Environment:
        env.filters["dis"] = self.dynamic_image_style
        env.filters["dynamic_image_style"] = self.dynamic_image_style
        env.filters["dynamic_image_style_url"] = self.dynamic_image_style_url
        env.filters["dynamic_image_style_source"] = self.dynamic_image_style_source
        return env


def make_environment(gate: DeliveryGate, **env_kwargs) -> Environment:
    """Convenience: a fresh Jinja2 Environment with the filters installed."""
    return DynamicImageStyleFilters(gate).install(Environment(**env_kwargs))
