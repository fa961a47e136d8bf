from __future__ import annotations

import json
from pathlib import Path

import pytest

from archstrap.config import EncryptionStrength, InstallConfig
from archstrap.state_store import (
    ConfigStore,
    InstallState,
    StateStore,
    load_answers,
    mark_step_completed,
    parse_kv,
    render_kv,
    save_kv,
)


def test_parse_kv_skips_comments_and_blank_lines() -> None:
    text = "# header\n\nhostname=box\n#hostname=other\nnot a record\nkey=a=b=c\n"
    assert parse_kv(text) == {"hostname": "box", "key": "a=b=c"}


def test_render_kv_truncates_multiline_values(caplog: pytest.LogCaptureFixture) -> None:
    out = render_kv({"a": "first\nsecond", "b": "x"}, header=["generated"])
    assert out == "# generated\na=first\nb=x\n"
    assert "newline" in caplog.text


def test_save_kv_replaces_file_without_leftovers(tmp_path: Path) -> None:
    path = tmp_path / "sub" / "record"
    save_kv(str(path), {"a": "1"})
    save_kv(str(path), {"b": "2"})
    assert path.read_text() == "b=2\n"
    assert not (tmp_path / "sub" / "record.tmp").exists()
    assert path.stat().st_mode & 0o777 == 0o600


def test_config_round_trip_keeps_types(tmp_path: Path) -> None:
    store = ConfigStore(str(tmp_path / "archstrap.conf"))
    cfg = InstallConfig(hostname="box", efi_on_removable=True, encryption_strength=EncryptionStrength.HIGH)
    store.save(cfg)

    text = (tmp_path / "archstrap.conf").read_text()
    assert text.startswith("# archstrap configuration")
    assert "efi_on_removable=1\n" in text
    assert "encryption_strength=high\n" in text

    loaded = store.load()
    assert loaded == cfg
    assert loaded.efi_on_removable is True
    assert loaded.encryption_strength is EncryptionStrength.HIGH


def test_load_missing_record_returns_none(tmp_path: Path) -> None:
    assert ConfigStore(str(tmp_path / "nope")).load() is None
    assert StateStore(str(tmp_path / "nope")).load() is None


def test_state_round_trip(tmp_path: Path) -> None:
    store = StateStore(str(tmp_path / "archstrap.state"))
    state = InstallState()
    state.set("target_disk", "/dev/sda")
    mark_step_completed(state, "01_configure")
    mark_step_completed(state, "02_partition")
    mark_step_completed(state, "01_configure")
    store.save(state)

    assert "completed_steps=01_configure,02_partition\n" in (tmp_path / "archstrap.state").read_text()
    loaded = store.load()
    assert loaded.completed_steps == ["01_configure", "02_partition"]
    assert loaded.get("target_disk") == "/dev/sda"

    store.clear()
    assert store.load() is None


def test_dry_run_stores_never_write(tmp_path: Path) -> None:
    StateStore(str(tmp_path / "s"), dry_run=True).save(InstallState(facts={"a": "1"}))
    ConfigStore(str(tmp_path / "c"), dry_run=True).save(InstallConfig(hostname="x"))
    assert list(tmp_path.iterdir()) == []


def test_redact_strips_sensitive_keys(tmp_path: Path) -> None:
    store = ConfigStore(str(tmp_path / "archstrap.conf"))
    store.save(InstallConfig(hostname="box", luks_passphrase="s3cret", user_password="pw", secrets_passphrase="x"))

    assert store.redact() is True
    text = (tmp_path / "archstrap.conf").read_text()
    assert "s3cret" not in text
    assert "user_password" not in text
    assert "secrets_passphrase" not in text
    assert "hostname=box" in text
    assert text.startswith("#")


def test_redact_other_path_and_missing_file(tmp_path: Path) -> None:
    store = ConfigStore(str(tmp_path / "live.conf"))
    copy = tmp_path / "target.conf"
    copy.write_text("luks_passphrase=abc\nhostname=box\n")
    assert store.redact(str(copy)) is True
    assert copy.read_text() == "hostname=box\n"
    assert store.redact() is False


def test_unknown_config_keys_are_ignored() -> None:
    cfg = InstallConfig.from_record({"hostname": "box", "aur_helper": "paru"})
    assert cfg.hostname == "box"
    assert "aur_helper" not in cfg.to_record()


def test_load_answers_formats(tmp_path: Path) -> None:
    j = tmp_path / "answers.json"
    j.write_text(json.dumps({"hostname": "box", "efi_on_removable": True}))
    y = tmp_path / "answers.yaml"
    y.write_text("hostname: box\nencryption_strength: maximum\n")
    kv = tmp_path / "answers.conf"
    kv.write_text("# seeded\nhostname=box\n")

    assert load_answers(str(j)) == {"hostname": "box", "efi_on_removable": True}
    assert load_answers(str(y)) == {"hostname": "box", "encryption_strength": "maximum"}
    assert load_answers(str(kv)) == {"hostname": "box"}


def test_load_answers_rejects_non_mapping(tmp_path: Path) -> None:
    p = tmp_path / "answers.json"
    p.write_text("[1, 2]")
    with pytest.raises(ValueError):
        load_answers(str(p))
