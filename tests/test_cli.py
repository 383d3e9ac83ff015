from __future__ import annotations

import pytest

import catalog_cli
from conftest import SYNTH
from image_utils import split_data_url


@pytest.fixture
def cli(monkeypatch, orchestrator, tmp_path):
    monkeypatch.setattr(catalog_cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(catalog_cli.log_setup, "configure", lambda: None)
    monkeypatch.setattr(catalog_cli, "build_pipeline", lambda settings: orchestrator)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8-test")
    monkeypatch.delenv("TEXT_PROVIDER", raising=False)

    front = tmp_path / "front.png"
    front.write_bytes(b"FRONT")
    return front


def test_add_queues_product(cli, store, capsys):
    assert catalog_cli.main(["add", "--front", str(cli), "--fit", "oversize"]) == 0

    [record] = store.products.list()
    assert split_data_url(record.raw_front) == ("image/png", b"FRONT")
    assert record.fit == "oversize"
    assert record.id in capsys.readouterr().out


def test_add_and_wait_saves_images(cli, store, tmp_path):
    out_dir = tmp_path / "out"

    rc = catalog_cli.main(["add", "--front", str(cli), "--wait", "--output-dir", str(out_dir)])

    assert rc == 0
    [record] = store.products.list()
    assert record.overall_status.value == "finished"
    saved = out_dir / record.id / "model_front.png"
    assert saved.read_bytes() == split_data_url(SYNTH)[1]


def test_wait_refuses_without_keys(cli, monkeypatch, store):
    monkeypatch.delenv("REPLICATE_API_TOKEN")
    assert catalog_cli.main(["add", "--front", str(cli), "--wait"]) == 2
    assert store.products.list() == []


def test_unknown_product(cli, capsys):
    assert catalog_cli.main(["show", "missing"]) == 1
    assert catalog_cli.main(["delete", "missing"]) == 1
    assert "not found" in capsys.readouterr().err


def test_retry_running_product_is_refused(cli, make_product, capsys):
    product = make_product()
    assert catalog_cli.main(["retry", product.id]) == 1
    assert "not exited" in capsys.readouterr().err


def test_list_and_show(cli, make_product, capsys):
    product = make_product()
    assert catalog_cli.main(["list"]) == 0
    assert catalog_cli.main(["show", product.id, "--json"]) == 0
    out = capsys.readouterr().out
    assert product.id in out
    assert '"raw_front"' not in out
