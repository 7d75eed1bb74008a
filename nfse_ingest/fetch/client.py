from datetime import date
from typing import ClassVar

import httpx
from pydantic import ValidationError

from nfse_ingest.fetch.credentials import BaseCredentialProvider
from nfse_ingest.fetch.exceptions import FetchError
from nfse_ingest.fetch.models import FetchEnvelope
from nfse_ingest.logging.logger import Log


class NfseApiClient:
    """Queries the municipal XML consultation endpoint one page at a time."""

    USER_AGENT: ClassVar[str] = "nfse-ingest/1.0.0"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: int,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)

    def close(self) -> None:
        self._client.close()

    def fetch_page(
        self,
        credentials: BaseCredentialProvider,
        start_date: date,
        end_date: date,
        page: int,
    ) -> FetchEnvelope:
        """Fetch one page of issued invoices for the given date range.

        Raises:
            FetchError: on missing token, transport failure, non-200 status or
                an unparseable response body.
        """
        token = credentials.get_decrypted().api_token
        if not token:
            raise FetchError("API token not found in credentials")

        params = {
            "dt_inicial": start_date.isoformat(),
            "dt_final": end_date.isoformat(),
            "nr_page": page,
        }
        headers = {
            "Authorization": token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        Log.info(
            "Requesting NFS-e page",
            start_date=params["dt_inicial"],
            end_date=params["dt_final"],
            page=page,
        )

        try:
            response = self._client.get(self._base_url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"API request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise FetchError(
                f"API returned status {response.status_code}: {response.text}"
            )

        try:
            envelope = FetchEnvelope.model_validate_json(response.content)
        except ValidationError as exc:
            raise FetchError(f"failed to parse API response: {exc}") from exc

        Log.info(
            "NFS-e page received",
            page=envelope.current_page,
            page_count=envelope.page_count,
            entries=len(envelope.entries),
            total_records=envelope.record_count,
        )
        return envelope
