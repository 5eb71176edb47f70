"""Tests for application wiring."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from msgrelay.core.exceptions import ConfigurationError
from msgrelay.core.registry import get_settings, set_settings
from msgrelay.main import create_app

from conftest import build_settings


@pytest.fixture(autouse=True)
def _reset_settings():
    yield
    set_settings(None)


class TestCreateApp:
    """create_app()"""

    def test_registers_routes_and_settings(self):
        settings = build_settings()
        app = create_app(settings)

        paths = {route.path for route in app.routes}
        assert {"/v1/messages", "/v1/models", "/health", "/service/info"} <= paths
        assert get_settings() is settings

    def test_rejects_non_http_upstream(self):
        with pytest.raises(ConfigurationError, match="upstream.url"):
            create_app(build_settings(upstream_url="ftp://upstream.local"))

    def test_rejects_bad_port(self):
        with pytest.raises(ConfigurationError, match="port"):
            create_app(build_settings(port=0))

    @pytest.mark.parametrize("chunk_bytes", [0, -8])
    def test_rejects_non_positive_chunk_bytes(self, chunk_bytes):
        with pytest.raises(ConfigurationError, match="chunk_bytes"):
            create_app(build_settings(chunk_bytes=chunk_bytes))

    @pytest.mark.parametrize("max_tool_calls", [0, -1])
    def test_rejects_non_positive_max_tool_calls(self, max_tool_calls):
        with pytest.raises(ConfigurationError, match="max_tool_calls"):
            create_app(build_settings(max_tool_calls=max_tool_calls))
