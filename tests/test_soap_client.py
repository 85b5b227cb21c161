from pathlib import Path
import sys

import pytest
import requests
from lxml import etree

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.nfe_client.exceptions import NFeTransportError
from app.nfe_client.response_parser import parse_sefaz_response
from app.nfe_client.soap_client import (
    SOAP_1_1,
    SOAP_1_2,
    SOAP_ENVELOPE_NS,
    SOAP_NAMESPACES,
    SoapClient,
    build_soap_envelope,
)
from _nfe_fixtures import RET_ENVI_NFE, make_config

WSDL_NS = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeStatusServico4"
ACTION = f"{WSDL_NS}/nfeStatusServicoNF"
PAYLOAD = (
    '<consStatServ xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">'
    "<tpAmb>2</tpAmb><cUF>35</cUF><xServ>STATUS</xServ></consStatServ>"
)


class FakeResponse:
    def __init__(self, status_code=200, content=b"", encoding="utf-8"):
        self.status_code = status_code
        self.content = content
        self.encoding = encoding
        self.text = content.decode("utf-8")


class FakeTransport:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(content=RET_ENVI_NFE.encode())
        self.error = error
        self.posts = []

    def post(self, address, message, headers):
        self.posts.append((address, message, headers))
        if self.error is not None:
            raise self.error
        return self.response


def test_envelope_soap12_without_header():
    env = etree.fromstring(build_soap_envelope(WSDL_NS, PAYLOAD))
    soap_ns = SOAP_ENVELOPE_NS[SOAP_1_2]

    assert env.tag == f"{{{soap_ns}}}Envelope"
    assert env.prefix == "soap"
    assert env.find(f"{{{soap_ns}}}Header") is None
    dados = env.find(f"{{{soap_ns}}}Body/{{{WSDL_NS}}}nfeDadosMsg")
    assert dados is not None
    assert etree.QName(dados[0]).localname == "consStatServ"


def test_envelope_with_cabec_msg_header():
    header = {"cUF": "35", "versaoDados": "3.10"}
    env = etree.fromstring(build_soap_envelope(WSDL_NS, PAYLOAD, header, SOAP_1_1))
    soap_ns = SOAP_ENVELOPE_NS[SOAP_1_1]

    cabec = env.find(f"{{{soap_ns}}}Header/{{{WSDL_NS}}}nfeCabecMsg")
    assert cabec.findtext(f"{{{WSDL_NS}}}cUF") == "35"
    assert cabec.findtext(f"{{{WSDL_NS}}}versaoDados") == "3.10"


def test_envelope_rejects_unknown_soap_version():
    with pytest.raises(ValueError):
        build_soap_envelope(WSDL_NS, PAYLOAD, soap_version="1.3")


def test_send_posts_envelope_with_soap12_action():
    transport = FakeTransport()
    client = SoapClient(make_config(), transport=transport)

    raw = client.send("https://sefaz/ws", "nfeStatusServicoNF", ACTION, SOAP_1_2, SOAP_NAMESPACES, PAYLOAD, None)

    assert raw == RET_ENVI_NFE
    address, message, headers = transport.posts[0]
    assert address == "https://sefaz/ws"
    assert f'action="{ACTION}"' in headers["Content-Type"]
    assert "SOAPAction" not in headers
    env = etree.fromstring(message)
    assert env.find(f".//{{{WSDL_NS}}}nfeDadosMsg") is not None


def test_send_soap11_uses_soapaction_header():
    transport = FakeTransport()
    SoapClient(make_config(), transport=transport).send(
        "https://sefaz/ws", "nfeStatusServicoNF", ACTION, SOAP_1_1, None, PAYLOAD, None
    )
    headers = transport.posts[0][2]
    assert headers["SOAPAction"] == f'"{ACTION}"'
    assert headers["Content-Type"].startswith("text/xml")


def test_send_maps_http_error_status():
    transport = FakeTransport(FakeResponse(status_code=500, content=b"<erro/>"))
    client = SoapClient(make_config(), transport=transport)
    with pytest.raises(NFeTransportError) as excinfo:
        client.send("https://sefaz/ws", "nfeStatusServicoNF", ACTION, SOAP_1_2, None, PAYLOAD, None)
    assert excinfo.value.http_status == 500


def test_send_maps_connection_errors():
    transport = FakeTransport(error=requests.exceptions.ConnectTimeout("timeout"))
    client = SoapClient(make_config(), transport=transport)
    with pytest.raises(NFeTransportError) as excinfo:
        client.send("https://sefaz/ws", "nfeStatusServicoNF", ACTION, SOAP_1_2, None, PAYLOAD, None)
    assert excinfo.value.http_status is None


def test_parse_ret_envi_nfe():
    parsed = parse_sefaz_response(RET_ENVI_NFE)

    assert parsed["root_tag"] == "retEnviNFe"
    assert parsed["cStat"] == "103"
    assert parsed["xMotivo"] == "Lote recebido com sucesso"
    assert parsed["nRec"] == "351000012345678"
    assert parsed["dhRecbto"] == "2026-10-19T10:00:05-03:00"
    assert parsed["protNFe"] == []


def test_parse_prot_nfe_rows():
    raw = (
        '<retConsReciNFe xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">'
        "<cStat>104</cStat><xMotivo>Lote processado</xMotivo><nRec>351000012345678</nRec>"
        '<protNFe versao="4.00"><infProt><chNFe>35261012345678000195550010000001231123456780</chNFe>'
        "<dhRecbto>2026-10-19T10:00:09-03:00</dhRecbto><nProt>135260000000001</nProt>"
        "<cStat>100</cStat><xMotivo>Autorizado o uso da NF-e</xMotivo></infProt></protNFe>"
        "</retConsReciNFe>"
    )
    parsed = parse_sefaz_response(raw)

    assert parsed["cStat"] == "104"
    assert parsed["nRec"] == "351000012345678"
    assert parsed["protNFe"] == [
        {
            "chNFe": "35261012345678000195550010000001231123456780",
            "cStat": "100",
            "xMotivo": "Autorizado o uso da NF-e",
            "nProt": "135260000000001",
            "dhRecbto": "2026-10-19T10:00:09-03:00",
        }
    ]


def test_parse_rejects_non_xml():
    with pytest.raises(etree.XMLSyntaxError):
        parse_sefaz_response("Service Unavailable")
