"""User-agent and IP metadata attached to new sessions."""

from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors
from user_agents import parse as parse_user_agent

from authcore.utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_AGENT = "UNKNOWN"


class Detector:
    """Structured OS, client and device fields for one user-agent string."""

    def __init__(self, user_agent: Optional[str]):
        """Parse the user agent once."""
        self.user_agent = user_agent or UNKNOWN_AGENT
        self._ua = parse_user_agent(self.user_agent)

    def get_os(self) -> Dict[str, Any]:
        os_family = self._ua.os.family
        return {
            "os_code": os_family[:3].upper() if os_family != "Other" else "",
            "os_name": os_family if os_family != "Other" else "",
            "os_version": self._ua.os.version_string,
        }

    def get_client(self) -> Dict[str, Any]:
        browser = self._ua.browser.family
        if self._ua.is_bot:
            client_type = "bot"
        elif browser == "Other":
            client_type = ""
        else:
            client_type = "browser"
        return {
            "client_type": client_type,
            "client_code": browser[:2].upper() if browser != "Other" else "",
            "client_name": browser if browser != "Other" else "",
            "client_version": self._ua.browser.version_string,
            "client_engine": "",
            "client_engine_version": "",
        }

    def get_device(self) -> Dict[str, Any]:
        if self._ua.is_mobile:
            device_name = "smartphone"
        elif self._ua.is_tablet:
            device_name = "tablet"
        elif self._ua.is_pc:
            device_name = "desktop"
        else:
            device_name = ""
        return {
            "device_name": device_name,
            "device_brand": self._ua.device.brand or "",
            "device_model": self._ua.device.model or "",
        }

    def session_fields(self) -> Dict[str, Any]:
        """All fields merged, ready to splat into a session record."""
        return {**self.get_os(), **self.get_client(), **self.get_device()}


class GeoLocator:
    """Country lookup backed by a MaxMind database, if one is configured."""

    def __init__(self, database_path: Optional[str] = None):
        """Open the mmdb file; without one every lookup returns None."""
        self.reader: Optional[geoip2.database.Reader] = None
        if database_path:
            try:
                self.reader = geoip2.database.Reader(database_path)
            except (OSError, ValueError) as e:
                logger.warning(f"GeoIP database not available: {e}")
                self.reader = None

    def country_code(self, ip: Optional[str]) -> Optional[str]:
        """Lowercase ISO country code for ``ip``."""
        if self.reader is None or not ip:
            return None
        try:
            if "City" in self.reader.metadata().database_type:
                iso_code = self.reader.city(ip).country.iso_code
            else:
                iso_code = self.reader.country(ip).country.iso_code
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None
        return iso_code.lower() if iso_code else None

    def close(self) -> None:
        if self.reader is not None:
            self.reader.close()
