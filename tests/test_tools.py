from pathlib import Path
import sys

import pytest
from lxml import etree

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.nfe_client.contingency import Contingency
from app.nfe_client.exceptions import (
    NFeContingencyUnavailableError,
    NFeInvalidArgumentError,
    NFeQRCodeError,
    NFeSigningError,
    NFeTransmissionError,
    NFeTransportError,
)
from app.nfe_client.tools import NFeTools, build_envi_nfe
from app.nfe_client.webservices import CatalogLoader
from app.nfe_client.xml_utils import DS_NS, NFE_NS, parse_xml
from _nfe_fixtures import FakeSoap, make_certificate_bundle, make_chave, make_config, nfe_xml

NS = {"n": NFE_NS, "ds": DS_NS}
MOTIVE = "SEFAZ SP fora do ar para autorizacao"

STRICT_XSD = f"""<?xml version="1.0" encoding="UTF-8"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema" targetNamespace="{NFE_NS}" elementFormDefault="qualified">
  <xs:element name="nfeProc" type="xs:string"/>
</xs:schema>
"""

NFCE_SEM_QR = b"""<WS>
  <UF>
    <sigla>SP</sigla>
    <homologacao>
      <NfeAutorizacao method="nfeAutorizacaoLote" operation="NFeAutorizacao4" version="4.00">https://sp/aut</NfeAutorizacao>
    </homologacao>
    <producao/>
  </UF>
</WS>
"""


@pytest.fixture(scope="module")
def bundle():
    return make_certificate_bundle()


@pytest.fixture(autouse=True)
def empty_schemes(tmp_path, monkeypatch):
    monkeypatch.setenv("NFE_SCHEMES_DIR", str(tmp_path / "schemes"))


def _tools(bundle, soap=None, contingency=None, **config):
    return NFeTools(make_config(**config), bundle, soap=soap or FakeSoap(), contingency=contingency)


def test_transmit_sends_envi_nfe_to_resolved_endpoint(bundle):
    soap = FakeSoap()
    result = _tools(bundle, soap).transmit(nfe_xml(), id_lote="123456789012345")

    call = soap.calls[0]
    assert call["url"] == "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeautorizacao4.asmx"
    assert call["method"] == "nfeAutorizacaoLote"
    assert call["action"] == "http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4/nfeAutorizacaoLote"
    assert call["soap_version"] == "1.2"
    assert call["header"] is None

    envi = etree.fromstring(call["payload"].encode())
    assert envi.tag == f"{{{NFE_NS}}}enviNFe"
    assert envi.get("versao") == "4.00"
    assert envi.findtext("n:idLote", namespaces=NS) == "123456789012345"
    assert envi.findtext("n:indSinc", namespaces=NS) == "0"
    assert envi.find("n:NFe/ds:Signature", NS) is not None

    assert result.raw_response == soap.response
    assert result.endpoint.sigla == "SP"
    assert result.schema_valid is True
    assert result.schema_error is None


def test_transmit_in_svc_corrects_document_and_endpoint(bundle):
    holder = Contingency()
    holder.activate("SVCAN", MOTIVE)
    soap = FakeSoap()

    result = _tools(bundle, soap, holder).transmit(nfe_xml())

    assert soap.calls[0]["url"] == "https://hom.svc.fazenda.gov.br/NFeAutorizacao4/NFeAutorizacao4.asmx"
    signed = parse_xml(result.signed_xml)
    assert signed.findtext(".//n:ide/n:tpEmis", namespaces=NS) == "6"
    assert signed.find("n:infNFe", NS).get("Id") == f"NFe{make_chave(tp_emis=6)}"


def test_explicit_state_overrides_shared_contingency(bundle):
    holder = Contingency()
    holder.activate("OFFLINE", MOTIVE)
    soap = FakeSoap()

    _tools(bundle, soap, holder).transmit(nfe_xml(), state=Contingency().current())

    assert soap.calls[0]["url"].startswith("https://homologacao.nfe.fazenda.sp.gov.br/")


def test_offline_signs_but_does_not_transmit(bundle):
    holder = Contingency()
    holder.activate("OFFLINE", MOTIVE)
    soap = FakeSoap()
    tools = _tools(bundle, soap, holder)

    signed = tools.sign_nfe(nfe_xml())
    assert parse_xml(signed.xml).findtext(".//n:ide/n:tpEmis", namespaces=NS) == "9"

    with pytest.raises(NFeContingencyUnavailableError):
        tools.transmit(nfe_xml())
    assert soap.calls == []


def test_epec_uses_payload_builder(bundle):
    holder = Contingency()
    holder.activate("EPEC", MOTIVE)
    soap = FakeSoap()
    seen = {}

    def builder(signed_xml, endpoint):
        seen["endpoint"] = endpoint
        return f'<envEvento xmlns="{NFE_NS}" versao="1.00"><idLote>1</idLote></envEvento>'

    _tools(bundle, soap, holder).transmit(nfe_xml(), payload_builder=builder)

    assert seen["endpoint"].method == "nfeRecepcaoEvento"
    assert soap.calls[0]["payload"].startswith("<envEvento")


def test_other_services_send_the_signed_document(bundle):
    soap = FakeSoap()
    _tools(bundle, soap).transmit(nfe_xml(), "NfeConsultaProtocolo")

    assert soap.calls[0]["method"] == "nfeConsultaNF"
    assert soap.calls[0]["payload"].startswith("<NFe")


def test_layout_310_passes_cabec_header(bundle):
    soap = FakeSoap()
    tools = _tools(bundle, soap)
    tools.version("3.10")

    tools.transmit(nfe_xml())

    assert soap.calls[0]["header"] == {"cUF": "35", "versaoDados": "3.10"}
    assert etree.fromstring(soap.calls[0]["payload"].encode()).get("versao") == "3.10"


def test_nfce_gets_qr_code_and_model_is_restored(bundle):
    holder = Contingency()
    holder.activate("OFFLINE", MOTIVE)
    tools = _tools(bundle, contingency=holder)

    signed = tools.sign_nfe(nfe_xml(model=65))

    root = parse_xml(signed.xml)
    assert signed.model == 65
    assert tools.model() == 55
    qr = root.findtext("n:infNFeSupl/n:qrCode", namespaces=NS)
    assert qr.startswith("https://www.homologacao.nfce.fazenda.sp.gov.br/NFCeConsultaPublica/")
    assert f"p={make_chave(model=65, tp_emis=9)}|2|2|19|100.00|" in qr
    assert [etree.QName(el).localname for el in root] == ["infNFe", "infNFeSupl", "Signature"]


def test_nfce_producao_qr_and_transmission_model(bundle):
    soap = FakeSoap()
    tools = _tools(bundle, soap, tp_amb=1)
    tools.model(65)

    result = tools.transmit(nfe_xml(model=65, tp_amb="1"))

    qr = parse_xml(result.signed_xml).findtext("n:infNFeSupl/n:qrCode", namespaces=NS)
    assert qr.startswith("https://www.nfce.fazenda.sp.gov.br/NFCeConsultaPublica/")
    assert f"p={make_chave(model=65)}|2|1|1|" in qr
    assert tools.model() == 65
    assert soap.calls[0]["url"] == "https://nfce.fazenda.sp.gov.br/ws/NFeAutorizacao4.asmx"


def test_transmit_routes_nfce_to_model_65_endpoint(bundle):
    soap = FakeSoap()
    tools = _tools(bundle, soap)

    result = tools.transmit(nfe_xml(model=65))

    assert result.endpoint.model == 65
    assert soap.calls[0]["url"] == "https://homologacao.nfce.fazenda.sp.gov.br/ws/NFeAutorizacao4.asmx"
    assert tools.model() == 55


def test_nfce_from_state_with_own_authorizer(bundle):
    soap = FakeSoap()
    result = _tools(bundle, soap, sigla_uf="PR").transmit(nfe_xml(model=65, c_uf="41"))

    qr = parse_xml(result.signed_xml).findtext("n:infNFeSupl/n:qrCode", namespaces=NS)
    assert qr.startswith("http://www.fazenda.pr.gov.br/nfce/qrcode?p=")
    assert soap.calls[0]["url"] == "https://homologacao.nfce.sefa.pr.gov.br/nfce/NFeAutorizacao4"


def test_nfce_without_qr_url_raises_qr_error(bundle, tmp_path):
    (tmp_path / "wsnfe_4.00_mod65.xml").write_bytes(NFCE_SEM_QR)
    tools = NFeTools(make_config(), bundle, soap=FakeSoap(), catalog_loader=CatalogLoader(tmp_path))

    with pytest.raises(NFeQRCodeError):
        tools.sign_nfe(nfe_xml(model=65))
    assert tools.model() == 55


def test_nfce_without_csc_raises_qr_error(bundle):
    with pytest.raises(NFeQRCodeError):
        _tools(bundle, csc="").sign_nfe(nfe_xml(model=65))


def test_schema_failure_is_reported_but_not_fatal(bundle, tmp_path, monkeypatch):
    schemes = tmp_path / "xsd"
    (schemes / "PL_009_V4").mkdir(parents=True)
    (schemes / "PL_009_V4" / "nfe_v4.00.xsd").write_text(STRICT_XSD, encoding="utf-8")
    monkeypatch.setenv("NFE_SCHEMES_DIR", str(schemes))
    soap = FakeSoap()

    result = _tools(bundle, soap).transmit(nfe_xml())

    assert len(soap.calls) == 1
    assert result.schema_valid is False
    assert result.schema_error.errors
    assert result.schema_error.schema_path.endswith("nfe_v4.00.xsd")


def test_sign_does_not_mutate_input_element(bundle):
    root = parse_xml(nfe_xml())
    before = etree.tostring(root)
    holder = Contingency()
    holder.activate("SVCRS", MOTIVE)

    _tools(bundle, contingency=holder).sign_nfe(root)

    assert etree.tostring(root) == before


def test_signing_errors_are_wrapped(bundle):
    holder = Contingency()
    holder.activate("EPEC", MOTIVE)
    tools = _tools(bundle, contingency=holder)

    with pytest.raises(NFeSigningError):
        tools.sign_nfe("<NFe><infNFe>")
    with pytest.raises(NFeSigningError) as excinfo:
        tools.sign_nfe(f'<NFe xmlns="{NFE_NS}"><infNFe Id="NFe1"><emit/></infNFe></NFe>')
    assert "ide" in str(excinfo.value)


def test_transport_errors_pass_through_and_others_are_wrapped(bundle):
    transport_error = NFeTransportError("HTTP 503", http_status=503)
    with pytest.raises(NFeTransportError) as excinfo:
        _tools(bundle, FakeSoap(error=transport_error)).transmit(nfe_xml())
    assert excinfo.value is transport_error

    with pytest.raises(NFeTransmissionError) as excinfo:
        _tools(bundle, FakeSoap(error=RuntimeError("socket closed"))).transmit(nfe_xml())
    assert "socket closed" in str(excinfo.value)


def test_parameter_setters(bundle):
    tools = _tools(bundle)
    assert tools.model(65) == 65
    with pytest.raises(NFeInvalidArgumentError):
        tools.model(57)
    assert tools.environment(1) == "producao"
    assert tools.tp_amb == 1
    with pytest.raises(NFeInvalidArgumentError):
        tools.set_sign_algorithm("md5")
    with pytest.raises(NFeInvalidArgumentError):
        tools.load_soap_class(object())
    assert tools.get_cuf("sp") == 35
    assert tools.get_acronym("43") == "RS"


def test_build_envi_nfe_rejects_bad_ind_sinc():
    with pytest.raises(NFeInvalidArgumentError):
        build_envi_nfe("<NFe/>", "4.00", ind_sinc=2)
