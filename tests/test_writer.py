from __future__ import annotations

import pytest

from permaweb_storage.adapters.tags import TagName
from permaweb_storage.errors import ConfigurationError, WriteError
from permaweb_storage.ledger import Ledger, SettlePolicy
from tests.conftest import ANCHOR


def test_settle_delay_grows_with_payload_size():
    policy = SettlePolicy()
    assert policy.delay_s(0) == pytest.approx(1.0)
    assert policy.delay_s(10_000_000) == pytest.approx(2.0)
    assert SettlePolicy(base_ms=0, bytes_per_ms=1).delay_s(500) == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_create_without_key_is_configuration_error(settings, gateway, sleeps):
    ledger = Ledger.from_settings(settings, None, gateway=gateway, sleep=sleeps)
    with pytest.raises(ConfigurationError):
        await ledger.writer.create_data_transaction("application/json", "{}", "pkg-a", "package.json")
    assert gateway.calls["tx_anchor"] == 0


@pytest.mark.asyncio
async def test_create_applies_default_then_extra_tags(ledger, settings, wallet, gateway):
    tx = await ledger.writer.create_data_transaction(
        "application/json",
        '{"name":"pkg-a"}',
        "pkg-a",
        "package.json",
        [(TagName.PACKAGE_VERSION, "1.0.0")],
    )

    assert [name for name, _ in tx.tags] == [
        "Content-Type",
        "App-Name",
        "App-Version",
        "Source",
        "ENV",
        "Package-Name",
        "File-Name",
        "Package-Version",
    ]
    assert tx.get_tag("Source") == settings.source
    assert tx.get_tag("ENV") == settings.env
    assert tx.get_tag("App-Name") == settings.app_name
    assert tx.last_tx == ANCHOR
    assert tx.reward == str(1000 + len(tx.data) * 3)
    assert tx.owner == wallet.owner
    assert tx.verify()


@pytest.mark.asyncio
async def test_extra_tags_outside_vocabulary_are_rejected(ledger):
    with pytest.raises(ValueError):
        await ledger.writer.create_data_transaction(
            "application/json", "{}", "pkg-a", "package.json", [("Package-Versoin", "1.0.0")]
        )


@pytest.mark.asyncio
async def test_accepted_submission_waits_settle_delay(ledger, gateway, sleeps, metrics):
    tx = await ledger.writer.create_data_transaction("application/octet-stream", b"x" * 20_000, "pkg-a", "pkg-a-1.0.0.tgz")
    sub = await ledger.writer.send_transaction(tx)

    assert sub.status == 200
    assert sub.tx_id == tx.id
    assert sleeps.delays == [pytest.approx(1.002)]
    assert gateway.calls["post_transaction"] == 1
    assert tx.id in gateway.txs
    assert metrics.registry.get_sample_value("ledger_submitted_bytes_total") == 20_000
    assert metrics.registry.get_sample_value(
        "ledger_transactions_total", {"file_kind": "tarball", "status": "200"}
    ) == 1


@pytest.mark.asyncio
async def test_rejected_submission_is_write_error_without_delay(ledger, gateway, sleeps):
    gateway.post_status = 400
    tx = await ledger.writer.create_data_transaction("application/json", "{}", "pkg-a", "package.json")

    with pytest.raises(WriteError) as ei:
        await ledger.writer.send_transaction(tx)

    assert ei.value.status == 400
    assert ei.value.status_text == "Bad Request"
    assert ei.value.status_code == 400
    assert sleeps.delays == []
    assert gateway.txs == {}
