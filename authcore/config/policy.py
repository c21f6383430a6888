"""Per-project authentication policy."""

from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from authcore.config.base import DEFAULT_SESSION_DURATION, Settings


class OAuthProviderConfig(BaseModel):
    """Credentials and switch for one OAuth2 provider."""

    enabled: bool = False
    app_id: str = ""
    secret: str = ""

    @property
    def configured(self) -> bool:
        """Both app id and secret are present."""
        return bool(self.app_id and self.secret)


class ProjectPolicy(BaseModel):
    """Authentication policy of a single tenant project."""

    project_id: str = "default"
    name: str = "authcore"
    url: str = "http://localhost"

    duration: int = Field(default=DEFAULT_SESSION_DURATION, ge=0)
    limit: int = Field(default=0, ge=0)
    password_history: int = Field(default=0, ge=0)
    personal_data_check: bool = False
    session_alerts: bool = False
    max_sessions: int = Field(default=0, ge=0)
    mock_numbers: Dict[str, str] = Field(default_factory=dict)

    smtp_enabled: bool = True
    sms_enabled: bool = True

    oauth_providers: Dict[str, OAuthProviderConfig] = Field(default_factory=dict)

    # Client platform hosts redirects may point at; "*.example.com" covers subdomains
    hostnames: List[str] = Field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> "ProjectPolicy":
        """Build a policy seeded with the application defaults."""
        values = {
            "name": settings.app_name,
            "duration": settings.session_duration,
            "limit": settings.users_limit,
            "password_history": settings.password_history,
            "personal_data_check": settings.personal_data_check,
            "session_alerts": settings.session_alerts,
            "max_sessions": settings.max_sessions,
            "smtp_enabled": settings.smtp_enabled,
            "sms_enabled": settings.sms_enabled,
        }
        values.update(overrides)
        return cls(**values)

    def provider(self, key: str) -> Optional[OAuthProviderConfig]:
        """Return the provider configuration, if any."""
        return self.oauth_providers.get(key)

    @property
    def allowed_hostnames(self) -> List[str]:
        """Platform hostnames plus the host of the project URL."""
        hosts = list(self.hostnames)
        own = urlparse(self.url).hostname
        if own:
            hosts.append(own)
        return hosts
