"""Tests for user-agent and geo detection."""

from authcore.core.detector import Detector, GeoLocator
from tests.conftest import CHROME_UA


class TestDetector:
    """User-agent parsing."""

    def test_desktop_chrome(self):
        fields = Detector(CHROME_UA).session_fields()

        assert fields["client_name"] == "Chrome"
        assert fields["client_type"] == "browser"
        assert fields["os_name"] == "Windows"
        assert fields["device_name"] == "desktop"

    def test_missing_agent(self):
        """No agent header still yields a complete, empty field set."""
        detector = Detector(None)
        fields = detector.session_fields()

        assert detector.user_agent == "UNKNOWN"
        assert fields["client_name"] == ""
        assert set(fields) >= {"os_code", "client_code", "device_brand", "device_model"}


class TestGeoLocator:
    """Country lookup."""

    def test_without_database(self):
        assert GeoLocator(None).country_code("8.8.8.8") is None

    def test_missing_database_file(self, tmp_path):
        """An unreadable mmdb path disables lookups instead of failing."""
        locator = GeoLocator(str(tmp_path / "missing.mmdb"))

        assert locator.reader is None
        assert locator.country_code("8.8.8.8") is None
