from abc import ABC, abstractmethod

from nfse_ingest.config.settings import Settings
from nfse_ingest.fetch.models import Credential


class BaseCredentialProvider(ABC):
    """Supplies one tenant's decrypted municipal API credential."""

    @abstractmethod
    def get_decrypted(self) -> Credential:
        """Return login, password and API token in clear text."""


class EnvCredentialProvider(BaseCredentialProvider):
    """Reads a single credential from application settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def get_decrypted(self) -> Credential:
        return Credential(
            login=self._settings.nfse_api_login,
            password=self._settings.nfse_api_password,
            api_token=self._settings.nfse_api_token,
        )
