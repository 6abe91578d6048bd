import base64
import hashlib
import json
import os
import shutil
import stat

import pytest

from config import get_settings
from errors import CredentialError
from vault import (
    CredentialVault,
    DeviceIdKeySource,
    StaticKeySource,
    key_source_from_settings,
)


def _vault(tmp_path, passphrase: str = "test-device-key") -> CredentialVault:
    return CredentialVault(tmp_path / "credentials", StaticKeySource(passphrase), iterations=1_000)


def test_saved_credentials_read_back(tmp_path) -> None:
    vault = _vault(tmp_path)

    vault.save_credentials("gourmet", "max.mustermann", "s3cret!")
    credential = vault.get_credentials("gourmet")

    assert credential.username == "max.mustermann"
    assert credential.password == "s3cret!"
    raw = (tmp_path / "credentials" / "gourmet.cred").read_text()
    assert "s3cret!" not in raw
    assert "max.mustermann" not in raw


def test_missing_credentials_read_as_none(tmp_path) -> None:
    assert _vault(tmp_path).get_credentials("ventopay") is None


def test_save_overwrites_and_delete_removes(tmp_path) -> None:
    vault = _vault(tmp_path)
    vault.save_credentials("gourmet", "max", "old")
    vault.save_credentials("gourmet", "max", "new")

    assert vault.get_credentials("gourmet").password == "new"

    vault.delete_credentials("gourmet")
    vault.delete_credentials("gourmet")
    assert vault.get_credentials("gourmet") is None
    assert list((tmp_path / "credentials").iterdir()) == []


def test_credentials_from_another_device_are_unreadable(tmp_path) -> None:
    _vault(tmp_path, "device-a").save_credentials("gourmet", "max", "s3cret!")

    assert _vault(tmp_path, "device-b").get_credentials("gourmet") is None


def test_file_copied_to_another_key_is_rejected(tmp_path) -> None:
    vault = _vault(tmp_path)
    vault.save_credentials("gourmet", "max", "s3cret!")
    folder = tmp_path / "credentials"
    shutil.copy(folder / "gourmet.cred", folder / "ventopay.cred")

    assert vault.get_credentials("ventopay") is None
    assert vault.get_credentials("gourmet") is not None


@pytest.mark.parametrize("content", ["", "not json", '{"v": 1}', '{"v": 1, "salt": "??", "token": "x", "iterations": 5}'])
def test_corrupted_file_reads_as_none(tmp_path, content) -> None:
    folder = tmp_path / "credentials"
    folder.mkdir()
    (folder / "gourmet.cred").write_text(content)

    assert _vault(tmp_path).get_credentials("gourmet") is None


def test_missing_key_source_fails_save_and_hides_reads(tmp_path) -> None:
    vault = _vault(tmp_path)
    vault.save_credentials("gourmet", "max", "s3cret!")
    vault.set_key_source(None)

    with pytest.raises(CredentialError):
        vault.save_credentials("gourmet", "max", "other")
    assert vault.get_credentials("gourmet") is None


def test_invalid_key_is_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        _vault(tmp_path).save_credentials("../escape", "max", "s3cret!")


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
def test_credential_file_is_private(tmp_path) -> None:
    vault = _vault(tmp_path)
    vault.save_credentials("gourmet", "max", "s3cret!")

    mode = stat.S_IMODE((tmp_path / "credentials" / "gourmet.cred").stat().st_mode)
    assert mode == 0o600


def test_device_id_passphrase_is_base64_sha256() -> None:
    expected = base64.b64encode(hashlib.sha256(b"ABCD-1234").digest()).decode()

    assert DeviceIdKeySource("ABCD-1234").passphrase() == expected


def test_settings_device_key_takes_precedence() -> None:
    source = key_source_from_settings(get_settings())

    assert source.passphrase() == "test-device-key"


def test_absurd_iteration_count_reads_as_none(tmp_path) -> None:
    vault = _vault(tmp_path)
    vault.save_credentials("gourmet", "max", "s3cret!")
    path = tmp_path / "credentials" / "gourmet.cred"
    envelope = json.loads(path.read_text())
    envelope["iterations"] = 2_000_000_000
    path.write_text(json.dumps(envelope))

    assert vault.get_credentials("gourmet") is None
