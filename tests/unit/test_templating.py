"""
Unit tests for the Jinja2 template filters
"""

import pytest
from jinja2 import Environment

from dynamic_image_style.errors import InvalidToken
from dynamic_image_style.templating import DynamicImageStyleFilters, make_environment

from tests.conftest import SAMPLE_ID


@pytest.fixture
def filters(gate):
    return DynamicImageStyleFilters(gate)


class TestUrlFilter:
    """Test cases for dynamic_image_style_url"""

    def test_returns_delivery_url_and_registers(self, filters, gate):
        """URL points at the gate and the token is allowed"""
        url = filters.dynamic_image_style_url(SAMPLE_ID, "w200_h100")
        assert url == "/dynamic-image-style/photos/sample.png/w200_h100"
        assert gate.validity.is_valid("w200_h100")

    def test_empty_file(self, filters, gate):
        """Empty file ids give None and register nothing"""
        assert filters.dynamic_image_style_url(None, "w200") is None
        assert filters.dynamic_image_style_url("", "w200") is None
        assert not gate.validity.is_valid("w200")


class TestSourceFilter:
    """Test cases for dynamic_image_style_source (srcset)"""

    def test_default_multiplier(self, filters, gate):
        """1x plus 2x, both registered"""
        srcset = filters.dynamic_image_style_source(SAMPLE_ID, "w320")
        assert srcset == (
            "/dynamic-image-style/photos/sample.png/w320_1x 1x, "
            "/dynamic-image-style/photos/sample.png/w320_2x 2x"
        )
        assert gate.validity.tokens() == {"w320_1x", "w320_2x"}

    def test_custom_multipliers(self, filters, gate):
        """Fractional multipliers keep their decimal, integers drop it"""
        srcset = filters.dynamic_image_style_source(SAMPLE_ID, "w100", [1.5, 3])
        assert srcset.split(", ")[1:] == [
            "/dynamic-image-style/photos/sample.png/w100_1.5x 1.5x",
            "/dynamic-image-style/photos/sample.png/w100_3x 3x",
        ]
        assert gate.validity.is_valid("w100_1.5x")

    def test_height_only_variants_are_not_deliverable(self, filters, gate, sample_source):
        """Height-only srcset tokens register but resolve to a zero width"""
        filters.dynamic_image_style_source(SAMPLE_ID, "h100")
        assert gate.validity.is_valid("h100_2x")
        with pytest.raises(InvalidToken):
            gate.deliver(SAMPLE_ID, "h100_2x")

    def test_empty_file(self, filters):
        assert filters.dynamic_image_style_source("", "w320") is None


class TestDirectFilter:
    """Test cases for dis / dynamic_image_style"""

    def test_builds_derivative_and_returns_public_url(self, filters, gate, sample_source, styles_root):
        """Renders server-side and links the static derivative"""
        url = filters.dynamic_image_style(SAMPLE_ID, "w100")
        assert url == "/styles/dynamic_w100/photos/sample.png.webp"
        assert (styles_root / "dynamic_w100" / "photos" / "sample.png.webp").is_file()
        # server-side use; nothing is added to the allow-list
        assert not gate.validity.is_valid("w100")

    def test_invalid_settings(self, filters, sample_source):
        """Malformed settings give None"""
        assert filters.dynamic_image_style(SAMPLE_ID, "100_w") is None

    @pytest.mark.parametrize("settings", ["w100_" + "9" * 400 + "x", "1" * 400 + ".5w", "h100_2x"])
    def test_unresolvable_settings(self, filters, sample_source, styles_root, settings):
        """Out-of-range and zero-width settings give None instead of raising"""
        assert filters.dynamic_image_style(SAMPLE_ID, settings) is None
        assert not styles_root.exists() or not any(styles_root.rglob("*.webp"))

    def test_missing_source(self, filters):
        """Missing source gives None"""
        assert filters.dynamic_image_style("nope.png", "w100") is None

    def test_empty_path(self, filters):
        """No file, no URL"""
        assert filters.dynamic_image_style(None, "w100") is None


class TestJinjaIntegration:
    def test_filters_installed(self, gate):
        """All four filter names are registered"""
        env = make_environment(gate)
        for name in ("dis", "dynamic_image_style", "dynamic_image_style_url", "dynamic_image_style_source"):
            assert name in env.filters

    def test_render_template(self, gate):
        """Filter output inside a real template"""
        env = DynamicImageStyleFilters(gate).install(Environment(autoescape=True))
        html = env.from_string('<img src="{{ f | dynamic_image_style_url("w64") }}">').render(f=SAMPLE_ID)
        assert html == '<img src="/dynamic-image-style/photos/sample.png/w64">'
        assert gate.validity.is_valid("w64")
