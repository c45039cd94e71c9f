"""
Unit tests for the delivery gate
"""

import io
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import Mock, patch

import cv2
import pytest
from PIL import Image

from dynamic_image_style.config import AppConfig
from dynamic_image_style.delivery import DeliveryGate, gate_from_config
from dynamic_image_style.errors import Forbidden, InvalidToken, NotFound
from dynamic_image_style.proxy import StageFileProxy

from tests.conftest import SAMPLE_ID, make_image


class TestDeliveryGate:
    """Test cases for DeliveryGate.deliver"""

    def test_unregistered_token_is_forbidden(self, gate, sample_source):
        """Allow-list check runs before anything else"""
        with patch("dynamic_image_style.delivery.build_plan") as planner:
            with pytest.raises(Forbidden):
                gate.deliver(SAMPLE_ID, "w200")
        planner.assert_not_called()

    def test_registered_but_malformed_token(self, gate, sample_source):
        """Registered tokens are still parsed"""
        gate.validity.register("100_w")
        with pytest.raises(InvalidToken):
            gate.deliver(SAMPLE_ID, "100_w")

    def test_missing_source_without_fetcher(self, gate):
        """No source and no fetcher means NotFound"""
        gate.validity.register("w200")
        with pytest.raises(NotFound):
            gate.deliver("photos/missing.png", "w200")

    def test_path_escape_is_not_found(self, gate, sample_source):
        """Identities may not leave files_root"""
        gate.validity.register("w200")
        with pytest.raises(NotFound):
            gate.deliver("../files/photos/sample.png", "w200")

    def test_deliver_success(self, gate, sample_source, styles_root):
        """Bytes, content type and headers for a fresh derivative"""
        gate.validity.register("w200_h100")
        d = gate.deliver(SAMPLE_ID, "w200_h100")
        assert d.content_type == "image/webp"
        assert d.content_length == len(d.body)
        assert d.headers["Content-Length"] == str(len(d.body))
        assert d.headers["X-Derivative-Created"] == "1"
        assert d.path == styles_root / "dynamic_w200_h100" / "photos" / "sample.png.webp"
        assert Image.open(io.BytesIO(d.body)).size == (200, 100)
        assert d.created

    def test_second_delivery_reuses_artifact(self, gate, sample_source):
        """Second delivery never renders"""
        gate.validity.register("w300")
        first = gate.deliver(SAMPLE_ID, "w300")
        with patch.object(gate.generator, "render") as spy:
            second = gate.deliver(SAMPLE_ID, "w300")
        spy.assert_not_called()
        assert not second.created
        assert second.body == first.body

    def test_concurrent_deliveries(self, gate, sample_source, styles_root):
        """Parallel deliveries share one artifact"""
        gate.validity.register("w160_h90")
        with patch.object(gate.generator, "render", wraps=gate.generator.render) as spy:
            with ThreadPoolExecutor(max_workers=10) as pool:
                results = list(pool.map(lambda _: gate.deliver(SAMPLE_ID, "w160_h90"), range(10)))
        assert spy.call_count == 1
        assert len({r.body for r in results}) == 1
        assert sum(1 for r in results if r.created) == 1
        artifacts = [p for p in styles_root.rglob("*") if p.is_file()]
        assert artifacts == [styles_root / "dynamic_w160_h90" / "photos" / "sample.png.webp"]

    def test_fetcher_fills_missing_source(self, gate, files_root):
        """Fetcher downloads the missing source into files_root"""
        def fake_fetch(file_id, dest):
            dest.parent.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(dest), make_image(80, 60))
            return dest

        gate.fetcher = Mock()
        gate.fetcher.fetch.side_effect = fake_fetch
        gate.validity.register("w40")

        d = gate.deliver("remote/pic.png", "w40")
        gate.fetcher.fetch.assert_called_once_with("remote/pic.png", files_root / "remote" / "pic.png")
        assert Image.open(io.BytesIO(d.body)).size == (40, 30)

    def test_fetcher_failure_is_not_found(self, gate):
        """Failed fetch means NotFound"""
        gate.fetcher = Mock()
        gate.fetcher.fetch.return_value = None
        gate.validity.register("w40")
        with pytest.raises(NotFound):
            gate.deliver("remote/pic.png", "w40")

    def test_build_url(self, gate):
        """File id is URL-quoted, token kept verbatim"""
        assert gate.build_url("photos/a b.png", "w200_2x") == "/dynamic-image-style/photos/a%20b.png/w200_2x"


class TestGateFromConfig:
    def test_defaults_have_no_fetcher(self):
        """Proxy disabled by default"""
        gate = gate_from_config(AppConfig())
        assert gate.fetcher is None
        assert gate.route_prefix == "/dynamic-image-style"
        assert gate.validity.backend.name == "memory"

    def test_proxy_enabled(self):
        """Proxy params flow into StageFileProxy"""
        cfg = AppConfig.from_dict({"proxy": {"enabled": True, "origin": "https://prod", "timeout": 2}})
        gate = gate_from_config(cfg)
        assert isinstance(gate.fetcher, StageFileProxy)
        assert gate.fetcher.timeout == 2.0
        assert gate.fetcher.origin_dir == Path(cfg.storage.files_root).name
