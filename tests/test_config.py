from pathlib import Path
import json
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.nfe_client.config import NFeConfig, ambiente_nombre, get_cuf, get_nfe_config, get_sigla
from app.nfe_client.exceptions import NFeInvalidArgumentError

CONFIG_JSON = {
    "atualizacao": "2026-10-19 09:00:00",
    "tpAmb": 2,
    "razaosocial": "EMPRESA TESTE LTDA",
    "siglaUF": "sp",
    "cnpj": "12.345.678/0001-95",
    "schemes": "PL_009_V4",
    "versao": "4.00",
    "CSC": "0123456789ABCDEF0123456789ABCDEF",
    "CSCid": "000001",
}


def _write_config(tmp_path, **overrides):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({**CONFIG_JSON, **overrides}), encoding="utf-8")
    return path


def test_from_json_normalizes_fields():
    cfg = NFeConfig.from_json(json.dumps(CONFIG_JSON))

    assert cfg.tp_amb == 2
    assert cfg.ambiente == "homologacao"
    assert cfg.sigla_uf == "SP"
    assert cfg.cnpj == "12345678000195"
    assert cfg.csc_id == "000001"
    assert cfg.atualizacao == "2026-10-19 09:00:00"


@pytest.mark.parametrize(
    "overrides",
    [
        {"tpAmb": 3},
        {"tpAmb": "dois"},
        {"siglaUF": "XX"},
        {"cnpj": "123"},
        {"versao": "4"},
        {"schemes": ""},
    ],
)
def test_invalid_fields_are_rejected_at_load_time(overrides):
    with pytest.raises(NFeInvalidArgumentError):
        NFeConfig.from_json(json.dumps({**CONFIG_JSON, **overrides}))


def test_from_json_rejects_non_object():
    with pytest.raises(NFeInvalidArgumentError):
        NFeConfig.from_json("[1, 2]")
    with pytest.raises(NFeInvalidArgumentError):
        NFeConfig.from_json("{")


def test_get_nfe_config_overlays_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("NFE_CONFIG_PATH", str(_write_config(tmp_path)))
    monkeypatch.setenv("NFE_TP_AMB", "producao")
    monkeypatch.setenv("NFE_CSC_ID", "000002")
    monkeypatch.setenv("NFE_CERT_PATH", "/certs/a1.pfx")
    monkeypatch.setenv("NFE_REQUEST_TIMEOUT", "45")

    cfg = get_nfe_config()

    assert cfg.tp_amb == 1
    assert cfg.csc_id == "000002"
    assert cfg.cert_path == "/certs/a1.pfx"
    assert cfg.request_timeout == 45


def test_get_nfe_config_errors(tmp_path, monkeypatch):
    monkeypatch.delenv("NFE_CONFIG_PATH", raising=False)
    with pytest.raises(NFeInvalidArgumentError):
        get_nfe_config()
    with pytest.raises(NFeInvalidArgumentError):
        get_nfe_config(str(tmp_path / "nao_existe.json"))

    monkeypatch.setenv("NFE_REQUEST_TIMEOUT", "rapido")
    with pytest.raises(NFeInvalidArgumentError):
        get_nfe_config(str(_write_config(tmp_path)))


def test_schemes_path_uses_env_root(tmp_path, monkeypatch):
    monkeypatch.setenv("NFE_SCHEMES_DIR", str(tmp_path))
    cfg = NFeConfig.from_json(json.dumps(CONFIG_JSON))
    assert cfg.schemes_path == tmp_path / "PL_009_V4"


def test_uf_tables():
    assert get_cuf("SP") == 35
    assert get_sigla("43") == "RS"
    assert get_sigla(53) == "DF"
    with pytest.raises(NFeInvalidArgumentError):
        get_cuf("ZZ")
    with pytest.raises(NFeInvalidArgumentError):
        get_sigla("99")


def test_ambiente_nombre():
    assert ambiente_nombre(1) == "producao"
    assert ambiente_nombre("2") == "homologacao"
    assert ambiente_nombre("Homologacao") == "homologacao"
    with pytest.raises(NFeInvalidArgumentError):
        ambiente_nombre(3)
