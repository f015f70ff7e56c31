from datetime import UTC, datetime

from milo.core.config import Settings
from milo.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            user_data_store=self.settings.user_data_store,
            integrations=self._integration_flags(),
            timestamp=datetime.now(UTC),
        )

    def _integration_flags(self) -> dict[str, bool]:
        # Only reports whether credentials are present; nothing is called.
        settings = self.settings
        return {
            "gemini": bool(settings.gemini_api_key.strip()),
            "google_calendar": bool(
                settings.google_client_id.strip() and settings.google_client_secret.strip()
            ),
            "sendgrid": bool(settings.sendgrid_api_key.strip() and settings.sendgrid_sender.strip()),
            "gmail_relay": bool(
                settings.gmail_client_id.strip()
                and settings.gmail_client_secret.strip()
                and settings.gmail_refresh_token.strip()
                and settings.gmail_sender.strip()
            ),
        }
