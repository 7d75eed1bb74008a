from datetime import date
from unittest.mock import MagicMock

import httpx
import pytest

from nfse_ingest.fetch.client import NfseApiClient
from nfse_ingest.fetch.credentials import BaseCredentialProvider, EnvCredentialProvider
from nfse_ingest.fetch.exceptions import FetchError
from nfse_ingest.fetch.models import Credential

BASE_URL = "https://nfse.example.gov.br/ws/services/xmlnfse"


class _StaticCredentials(BaseCredentialProvider):
    def __init__(self, token: str = "secret-token") -> None:
        self._token = token

    def get_decrypted(self) -> Credential:
        return Credential(login="user", password="pass", api_token=self._token)


def _envelope_json(page: int = 1, page_count: int = 2) -> dict:
    return {
        "RecordCount": 1,
        "RecordsPerPage": 50,
        "PageCount": page_count,
        "CurrentPage": page,
        "Dados": [{"NrNfse": 42, "XmlCompactado": "UEsDBA=="}],
    }


def _make_client(handler) -> tuple[NfseApiClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = NfseApiClient(
        base_url=BASE_URL, timeout_seconds=5, transport=httpx.MockTransport(record)
    )
    return client, requests


class TestFetchPage:
    def test_sends_date_range_page_and_token(self) -> None:
        client, requests = _make_client(lambda r: httpx.Response(200, json=_envelope_json()))

        client.fetch_page(_StaticCredentials(), date(2025, 8, 1), date(2025, 8, 31), 2)

        [request] = requests
        assert request.method == "GET"
        assert request.url.params["dt_inicial"] == "2025-08-01"
        assert request.url.params["dt_final"] == "2025-08-31"
        assert request.url.params["nr_page"] == "2"
        assert request.headers["Authorization"] == "secret-token"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["User-Agent"] == NfseApiClient.USER_AGENT

    def test_returns_envelope(self) -> None:
        client, _ = _make_client(lambda r: httpx.Response(200, json=_envelope_json()))

        envelope = client.fetch_page(
            _StaticCredentials(), date(2025, 8, 1), date(2025, 8, 31), 1
        )

        assert envelope.page_count == 2
        assert envelope.entries[0].number == 42

    def test_missing_token_raises_without_request(self) -> None:
        client, requests = _make_client(lambda r: httpx.Response(200, json=_envelope_json()))

        with pytest.raises(FetchError, match="API token not found"):
            client.fetch_page(_StaticCredentials(token=""), date(2025, 8, 1), date(2025, 8, 31), 1)

        assert requests == []

    def test_non_200_raises_with_status_and_body(self) -> None:
        client, _ = _make_client(lambda r: httpx.Response(401, text="invalid token"))

        with pytest.raises(FetchError, match="status 401: invalid token"):
            client.fetch_page(_StaticCredentials(), date(2025, 8, 1), date(2025, 8, 31), 1)

    def test_invalid_json_raises(self) -> None:
        client, _ = _make_client(lambda r: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(FetchError, match="failed to parse API response"):
            client.fetch_page(_StaticCredentials(), date(2025, 8, 1), date(2025, 8, 31), 1)

    def test_transport_error_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = _make_client(refuse)

        with pytest.raises(FetchError, match="API request failed"):
            client.fetch_page(_StaticCredentials(), date(2025, 8, 1), date(2025, 8, 31), 1)


class TestEnvCredentialProvider:
    def test_reads_settings(self) -> None:
        settings = MagicMock(nfse_api_login="l", nfse_api_password="p", nfse_api_token="t")
        credential = EnvCredentialProvider(settings).get_decrypted()
        assert credential == Credential(login="l", password="p", api_token="t")
