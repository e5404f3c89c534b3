from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
import respx
from typer.testing import CliRunner

from permaweb_storage.adapters.b64 import b64url_encode
from permaweb_storage.adapters.tags import TagList, TagName
from permaweb_storage.adapters.transaction import Transaction
from permaweb_storage.cli import app
from tests.conftest import ANCHOR

runner = CliRunner()
BASE = "https://gateway.test:443"
QUIET = ["--log-level", "ERROR"]


@pytest.fixture(autouse=True)
def gateway_env(monkeypatch: Any, restore_logging: None) -> None:
    monkeypatch.setenv("PERMAWEB_HOST", "gateway.test")
    monkeypatch.setenv("PERMAWEB_PORT", "443")
    monkeypatch.setenv("PERMAWEB_PROTOCOL", "https")
    for key in (
        "PERMAWEB_JWK",
        "PERMAWEB_STORAGE_ADDRESS",
        "PERMAWEB_PACKAGES",
        "PERMAWEB_LOG_LEVEL",
        "PERMAWEB_LOG_FORMAT",
    ):
        monkeypatch.delenv(key, raising=False)


def _data(payload: Any) -> httpx.Response:
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return httpx.Response(200, text=b64url_encode(raw))


def test_address_prints_wallet_address(jwk_file, wallet):
    result = runner.invoke(app, [*QUIET, "address", "--jwk", str(jwk_file)])
    assert result.exit_code == 0
    assert result.stdout.strip() == wallet.address


def test_address_with_missing_key_file_fails(tmp_path):
    result = runner.invoke(app, [*QUIET, "address", "--jwk", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "error [configuration_error]" in result.output


@respx.mock
def test_list_prints_package_names():
    respx.post(f"{BASE}/arql").mock(return_value=httpx.Response(200, json=["t1", "t2"]))
    respx.get(f"{BASE}/tx/t1/data").mock(return_value=_data({"name": "pkg-a"}))
    respx.get(f"{BASE}/tx/t2/data").mock(return_value=_data({"name": "pkg-b"}))

    result = runner.invoke(app, [*QUIET, "list"])

    assert result.exit_code == 0
    assert result.stdout.split() == ["pkg-a", "pkg-b"]


@respx.mock
def test_show_prints_latest_metadata():
    respx.post(f"{BASE}/arql").mock(return_value=httpx.Response(200, json=["old", "new"]))
    newest = respx.get(f"{BASE}/tx/new/data").mock(
        return_value=_data({"name": "pkg-a", "dist-tags": {"latest": "2.0.0"}})
    )

    result = runner.invoke(app, [*QUIET, "show", "pkg-a"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["dist-tags"]["latest"] == "2.0.0"
    assert newest.called


@respx.mock
def test_show_unknown_package_exits_with_error():
    respx.post(f"{BASE}/arql").mock(return_value=httpx.Response(200, text=""))

    result = runner.invoke(app, [*QUIET, "show", "pkg-missing"])

    assert result.exit_code == 1
    assert "error [not_found]" in result.output


def _signed_tarball(wallet, payload: bytes) -> Transaction:
    tags = TagList(
        [
            (TagName.CONTENT_TYPE, "application/octet-stream"),
            (TagName.SOURCE, "NPM"),
            (TagName.ENV, "TEST-6"),
            (TagName.PACKAGE_NAME, "pkg-a"),
            (TagName.FILE_NAME, "pkg-a-1.0.0.tgz"),
        ]
    )
    return Transaction.build(payload, tags, last_tx=ANCHOR, reward="1").sign(wallet)


@respx.mock
def test_fetch_writes_verified_tarball(tmp_path, wallet):
    payload = b"\x1f\x8b tarball bytes"
    tx = _signed_tarball(wallet, payload)
    respx.post(f"{BASE}/arql").mock(return_value=httpx.Response(200, json=[tx.id]))
    respx.get(f"{BASE}/tx/{tx.id}").mock(return_value=httpx.Response(200, json=tx.to_json()))
    out = tmp_path / "pkg-a-1.0.0.tgz"

    result = runner.invoke(app, [*QUIET, "fetch", "pkg-a", "pkg-a-1.0.0.tgz", "--out", str(out)])

    assert result.exit_code == 0
    assert out.read_bytes() == payload
    assert f"wrote {len(payload)} bytes" in result.stdout


@respx.mock
def test_fetch_gateway_down_reports_query_error():
    respx.post(f"{BASE}/arql").mock(side_effect=httpx.ConnectError("refused"))

    result = runner.invoke(app, [*QUIET, "fetch", "pkg-a", "pkg-a-1.0.0.tgz"])

    assert result.exit_code == 1
    assert "error [query_error]" in result.output


@respx.mock
def test_fetch_to_stdout_keeps_logs_off_the_payload(wallet, monkeypatch):
    monkeypatch.setenv("PERMAWEB_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("PERMAWEB_REQUEST_LOGGING", "true")
    payload = b"\x1f\x8b" + bytes(range(256))
    tx = _signed_tarball(wallet, payload)
    respx.post(f"{BASE}/arql").mock(return_value=httpx.Response(200, json=[tx.id]))
    respx.get(f"{BASE}/tx/{tx.id}").mock(return_value=httpx.Response(200, json=tx.to_json()))

    result = runner.invoke(app, ["fetch", "pkg-a", "pkg-a-1.0.0.tgz"])

    assert result.exit_code == 0
    assert result.stdout_bytes == payload
    assert "gateway.request" in result.stderr
