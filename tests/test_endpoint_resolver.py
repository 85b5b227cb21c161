from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.nfe_client.contingency import Contingency
from app.nfe_client.endpoint_resolver import EndpointResolver, URL_PORTAL, parse_version
from app.nfe_client.exceptions import (
    NFeContingencyUnavailableError,
    NFeInvalidArgumentError,
    NFeServiceNotFoundError,
)
from app.nfe_client.webservices import ServiceCatalog

MOTIVE = "SEFAZ SP indisponivel para autorizacao"


def _resolver(version="4.00"):
    return EndpointResolver(ServiceCatalog(version))


def _state(ctype):
    return Contingency().activate(ctype, MOTIVE)


def test_sp_homologacao_nfe_autorizacao():
    d = _resolver().resolve("NfeAutorizacao", "SP", "homologacao", 55)

    assert d.url == "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeautorizacao4.asmx"
    assert d.method == "nfeAutorizacaoLote"
    assert d.namespace == f"{URL_PORTAL}/wsdl/NFeAutorizacao4"
    assert d.soap_action == "http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4/nfeAutorizacaoLote"
    assert d.c_uf == 35
    assert d.sigla == "SP"
    assert d.environment == "homologacao"
    assert d.model == 55
    assert d.header is None


def test_resolution_is_deterministic():
    resolver = _resolver()
    assert resolver.resolve("NfeStatusServico", "sp", 2, 55) == resolver.resolve(
        "NfeStatusServico", "SP", "homologacao", 55
    )


def test_layout_310_adds_nfe_cabec_msg_header():
    d = _resolver("3.10").resolve("NfeAutorizacao", "SP", "homologacao", 55)

    assert d.header == {"cUF": "35", "versaoDados": "3.10"}
    assert d.url == "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeautorizacao.asmx"
    assert d.soap_action.endswith("/NfeAutorizacao/nfeAutorizacaoLote")


def test_svc_an_substitutes_the_catalog_key():
    d = _resolver().resolve("NfeAutorizacao", "SP", "homologacao", 55, _state("SVCAN"))

    assert d.url == "https://hom.svc.fazenda.gov.br/NFeAutorizacao4/NFeAutorizacao4.asmx"
    # cUF y sigla siguen siendo los del emisor
    assert d.c_uf == 35
    assert d.sigla == "SP"


def test_alias_uf_uses_svrs_endpoint():
    d = _resolver().resolve("NfeAutorizacao", "AC", "homologacao", 55)
    assert d.url == "https://nfe-homologacao.svrs.rs.gov.br/ws/NfeAutorizacao/NFeAutorizacao4.asmx"
    assert d.c_uf == 12


@pytest.mark.parametrize("ctype", ["FSDA", "OFFLINE"])
def test_no_service_in_fsda_or_offline(ctype):
    resolver = _resolver()
    for service in ("NfeAutorizacao", "NfeStatusServico", "RecepcaoEvento"):
        with pytest.raises(NFeContingencyUnavailableError):
            resolver.resolve(service, "SP", "homologacao", 55, _state(ctype))


def test_epec_only_allows_autorizacao():
    resolver = _resolver()
    state = _state("EPEC")

    d = resolver.resolve("NfeAutorizacao", "SP", "homologacao", 55, state)
    assert d.method == "nfeRecepcaoEvento"
    assert d.url.startswith("https://hom1.nfe.fazenda.gov.br/")

    with pytest.raises(NFeContingencyUnavailableError):
        resolver.resolve("NfeStatusServico", "SP", "homologacao", 55, state)


def test_ignore_contingency_resolves_normally():
    d = _resolver().resolve(
        "NfeConsultaQR", "SP", "homologacao", 65, _state("OFFLINE"), ignore_contingency=True
    )
    assert d.url.endswith("/NFCeConsultaPublica/Paginas/ConsultaQRCode.aspx")
    assert d.url_chave == "https://www.homologacao.nfce.fazenda.sp.gov.br/consulta"


def test_nfce_state_with_own_authorizer():
    d = _resolver().resolve("NfeAutorizacao", "PR", "homologacao", 65)

    assert d.url == "https://homologacao.nfce.sefa.pr.gov.br/nfce/NFeAutorizacao4"
    assert d.c_uf == 41
    assert d.model == 65


def test_unknown_uf_and_missing_service():
    resolver = _resolver()
    with pytest.raises(NFeInvalidArgumentError):
        resolver.resolve("NfeAutorizacao", "XX", "homologacao", 55)
    with pytest.raises(NFeServiceNotFoundError):
        resolver.resolve("NfeConsultaQR", "SP", "homologacao", 55)


def test_parse_version_compares_numerically():
    assert parse_version("3.10") < parse_version("4.00")
    assert parse_version("4.00") == (4, 0)
    with pytest.raises(NFeInvalidArgumentError):
        parse_version("v4")
