import hashlib
import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import ClassVar

from nfse_ingest.logging.logger import Log
from nfse_ingest.parser.exceptions import DocumentParseError
from nfse_ingest.parser.models import ZERO_DATE, ParsedCandidate

ZERO = Decimal("0")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find(element: ET.Element | None, *path: str) -> ET.Element | None:
    """Walk child elements by local name, ignoring namespaces."""
    for name in path:
        if element is None:
            return None
        element = next(
            (child for child in element if _local_name(child.tag) == name), None
        )
    return element


def _raw_text(element: ET.Element | None, *path: str) -> str:
    node = _find(element, *path)
    if node is None or node.text is None:
        return ""
    return node.text


def _text(element: ET.Element | None, *path: str) -> str:
    return _raw_text(element, *path).strip()


class NFSeParser:
    """Parses a `consultarNotaResponse` document into a ParsedCandidate.

    Layout consumed (local names, namespaces ignored):

        consultarNotaResponse/ListaNfse/ComplNfse
            Nfse/InfNfse                 invoice body
            NfseCancelamento/Confirmacao cancellation confirmation
            NfseSubstituicao             substitution reference

    Malformed numbers and dates degrade to zero values; only empty input,
    malformed XML or a foreign root element reject the document.
    """

    ROOT: ClassVar[str] = "consultarNotaResponse"
    DATE_FORMAT: ClassVar[str] = "%Y-%m-%d %H:%M:%S"

    def parse(self, content: bytes | str) -> ParsedCandidate:
        """Parse one normalized XML document.

        Raises:
            DocumentParseError: on empty input, malformed XML, an unsupported
                declared charset or a wrong root element.
        """
        if not content or not content.strip():
            raise DocumentParseError("empty XML content")

        try:
            root = ET.fromstring(content)
        except (ET.ParseError, ValueError, LookupError) as exc:
            Log.error("Failed to parse NFS-e XML", error=str(exc))
            raise DocumentParseError(f"failed to parse XML: {exc}") from exc

        if _local_name(root.tag) != self.ROOT:
            raise DocumentParseError(
                f"expected root element <{self.ROOT}> but found <{_local_name(root.tag)}>"
            )

        compl = _find(root, "ListaNfse", "ComplNfse")
        inf = _find(compl, "Nfse", "InfNfse")
        if inf is None:
            Log.warning("NFS-e XML has no InfNfse element", root=_local_name(root.tag))
        values = _find(inf, "Servico", "Valores")
        provider = _find(inf, "PrestadorServico")
        taker = _find(inf, "TomadorServico")

        number = _text(inf, "Numero")
        verification_code = _text(inf, "CodigoVerificacao")
        provider_tax_id = _text(provider, "IdentificacaoPrestador", "Cnpj")
        issue_date_raw = _raw_text(inf, "DataEmissao")

        taker_tax_id = _text(taker, "IdentificacaoTomador", "CpfCnpj", "Cnpj")
        if not taker_tax_id:
            taker_tax_id = _text(taker, "IdentificacaoTomador", "CpfCnpj", "Cpf")

        sucesso = _text(
            compl,
            "NfseCancelamento",
            "Confirmacao",
            "InfConfirmacaoCancelamento",
            "Sucesso",
        )

        candidate = ParsedCandidate(
            number=number,
            verification_code=verification_code,
            provider_tax_id=provider_tax_id,
            taker_tax_id=taker_tax_id,
            service_value=self._parse_decimal(
                _text(values, "ValorServicos"), "service_value", warn_empty=True
            ),
            service_code=_text(inf, "Servico", "ItemListaServico"),
            issue_date=self._parse_datetime(issue_date_raw, "issue_date", warn_empty=True),
            issue_date_raw=issue_date_raw,
            municipal_registration=_text(
                provider, "IdentificacaoPrestador", "InscricaoMunicipal"
            ),
            competence=_text(inf, "Competencia"),
            rps_issue_date=self._parse_datetime(
                _text(inf, "DataEmissaoRps"), "rps_issue_date"
            ),
            is_cancelled=sucesso.lower() == "true",
            is_substituted=bool(_text(compl, "NfseSubstituicao", "SubstituicaoNfse")),
            fingerprint=self.fingerprint(
                verification_code, number, provider_tax_id, issue_date_raw
            ),
            xml=content if isinstance(content, str) else content.decode("utf-8", "replace"),
            rps_number=_text(inf, "IdentificacaoRps", "Numero"),
            cnae_code=_text(inf, "Servico", "CodigoCnae"),
            tax_base=self._parse_decimal(_text(values, "BaseCalculo"), "tax_base"),
            iss_rate=self._parse_decimal(_text(values, "Aliquota"), "iss_rate"),
            iss_value=self._parse_decimal(_text(values, "ValorIss"), "iss_value"),
            net_value=self._parse_decimal(_text(values, "ValorLiquidoNfse"), "net_value"),
            taker_name=_text(taker, "RazaoSocial"),
            provider_name=_text(provider, "RazaoSocial"),
            provider_trade_name=_text(provider, "NomeFantasia"),
        )

        Log.info(
            "Parsed NFS-e XML",
            number=candidate.number,
            verification_code=candidate.verification_code,
            provider_tax_id=candidate.provider_tax_id,
            service_value=candidate.service_value,
            is_cancelled=candidate.is_cancelled,
            is_substituted=candidate.is_substituted,
        )
        return candidate

    @staticmethod
    def fingerprint(
        verification_code: str, number: str, provider_tax_id: str, issue_date_raw: str
    ) -> str:
        """SHA-256 over the critical fields, using the unparsed issue date."""
        data = f"{verification_code}|{number}|{provider_tax_id}|{issue_date_raw}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def _parse_decimal(self, raw: str, field: str, warn_empty: bool = False) -> Decimal:
        if not raw:
            if warn_empty:
                Log.warning("Missing decimal field, defaulting to zero", field=field)
            return ZERO
        try:
            value = Decimal(raw)
        except InvalidOperation:
            Log.warning("Failed to parse decimal field", field=field, value=raw)
            return ZERO
        if not value.is_finite():
            Log.warning("Non-finite decimal field", field=field, value=raw)
            return ZERO
        return value

    def _parse_datetime(self, raw: str, field: str, warn_empty: bool = False) -> datetime:
        value = raw.strip()
        if not value:
            if warn_empty:
                Log.warning("Missing date field, defaulting to zero date", field=field)
            return ZERO_DATE
        try:
            return datetime.strptime(value, self.DATE_FORMAT)
        except ValueError:
            Log.warning("Failed to parse date field", field=field, value=raw)
            return ZERO_DATE
