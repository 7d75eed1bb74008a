from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FetchEntry(BaseModel):
    """One invoice entry of the municipal API response."""

    model_config = ConfigDict(populate_by_name=True)

    number: int = Field(alias="NrNfse")
    issue_date: str = Field(default="", alias="DtEmissao")
    competence: int = Field(default=0, alias="NrCompetencia")
    container: str = Field(default="", alias="XmlCompactado")


class FetchEnvelope(BaseModel):
    """Paged response of the municipal XML consultation endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    record_count: int = Field(default=0, alias="RecordCount")
    records_per_page: int = Field(default=0, alias="RecordsPerPage")
    page_count: int = Field(default=0, alias="PageCount")
    current_page: int = Field(default=0, alias="CurrentPage")
    entries: list[FetchEntry] = Field(default_factory=list, alias="Dados")

    @field_validator("entries", mode="before")
    @classmethod
    def _null_entries(cls, value: object) -> object:
        return [] if value is None else value


@dataclass(frozen=True)
class Credential:
    """Decrypted API credential of one tenant."""

    login: str
    password: str
    api_token: str
