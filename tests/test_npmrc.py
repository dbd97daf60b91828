"""
Tests for .npmrc generation and the backup/restore handle.
"""

import os

import pytest

from npm_buildinfo.error_handling import ConfigMutationError, NpmrcRestoreError
from npm_buildinfo.npmrc import (
    NPMRC_BACKUP_FILE_NAME,
    NPMRC_FILE_NAME,
    NpmrcBackup,
    NpmrcDocument,
    TypeRestriction,
    expand_array_value,
    is_valid_key,
    translate_npm_config,
    update_type_restriction,
)

REGISTRY = "https://acme.jfrog.io/artifactory/api/npm/npm-virtual"
AUTH = "_authToken = secret-token\nalways-auth = true\n"


class TestTranslateNpmConfig:
    """Test translating 'npm config list' into an .npmrc document."""

    def test_reserved_keys_dropped(self):
        dump = "\n".join(
            [
                "; cli configs",
                "registry = https://registry.npmjs.org/",
                "metrics-registry = https://registry.npmjs.org/",
                "json = true",
                "//registry.npmjs.org/:_authToken = abc",
                "cache = /home/u/.npm",
            ]
        )

        document = translate_npm_config(dump, REGISTRY, AUTH, json_output=False)

        assert document.directives[0] == "cache = /home/u/.npm"
        assert "registry.npmjs.org" not in document.render()
        assert document.render().count("registry = ") == 1

    def test_trailer_order(self):
        """json, registry and auth are appended last, in that order."""
        document = translate_npm_config("cache = /tmp\n", REGISTRY, AUTH, json_output=True)

        assert document.directives[-3:] == ["json = true", f"registry = {REGISTRY}", AUTH]
        assert document.render().endswith(f"json = true\nregistry = {REGISTRY}\n{AUTH}")

    def test_scoped_registry_rewritten(self):
        document = translate_npm_config(
            "@acme:registry = https://npm.acme.com/\n", REGISTRY, AUTH, json_output=False
        )
        assert document.directives[0] == f"@acme:registry = {REGISTRY}"

    def test_array_values_expanded(self):
        document = translate_npm_config(
            'ca = ["a","b"]\nempty = []\n', REGISTRY, "", json_output=False
        )
        assert document.directives[:2] == ['ca[] = "a"', 'ca[] = "b"']
        assert not any(line.startswith("empty") for line in document.directives)

    def test_lines_without_separator_are_skipped(self):
        document = translate_npm_config(
            "garbage line\n = value\n\nfund = false\n", REGISTRY, "", json_output=False
        )
        assert document.directives[0] == "fund = false"

    def test_omit_takes_precedence_over_only(self):
        document = translate_npm_config(
            "only = prod\nomit = dev\n", REGISTRY, AUTH, json_output=False
        )
        assert document.type_restriction == TypeRestriction.PROD_ONLY

    def test_production_true_is_prod_only(self):
        document = translate_npm_config("production = true\n", REGISTRY, AUTH, json_output=False)
        assert document.type_restriction == TypeRestriction.PROD_ONLY

    def test_no_restriction_keys_is_default(self):
        document = translate_npm_config("cache = /tmp\n", REGISTRY, AUTH, json_output=False)
        assert document.type_restriction == TypeRestriction.DEFAULT


class TestTypeRestriction:
    """Test the restriction classification rules."""

    def test_omit_without_dev_is_all(self):
        assert update_type_restriction(TypeRestriction.DEV_ONLY, "omit", "") == TypeRestriction.ALL

    def test_first_deprecated_key_wins(self):
        restriction = update_type_restriction(TypeRestriction.DEFAULT, "only", "development")
        assert restriction == TypeRestriction.DEV_ONLY

        restriction = update_type_restriction(restriction, "production", "true")
        assert restriction == TypeRestriction.DEV_ONLY

    def test_unrelated_key_keeps_current(self):
        assert (
            update_type_restriction(TypeRestriction.DEFAULT, "production", "false")
            == TypeRestriction.DEFAULT
        )


class TestHelpers:
    @pytest.mark.parametrize("key", ["registry", "metrics-registry", "json", "@scope:registry", "//host/:_auth", "; comment"])
    def test_invalid_keys(self, key):
        assert not is_valid_key(key)

    def test_valid_key(self):
        assert is_valid_key("cache")

    def test_expand_array_value(self):
        assert expand_array_value("k", "[x,y]") == ["k[] = x", "k[] = y"]
        assert expand_array_value("k", "[]") == []


class TestNpmrcBackup:
    """Test that the project .npmrc always ends in its original state."""

    def test_restore_existing_file_byte_identical(self, tmp_path):
        original = b"registry = https://registry.npmjs.org/\r\n# keep me\n"
        npmrc = tmp_path / NPMRC_FILE_NAME
        npmrc.write_bytes(original)

        backup = NpmrcBackup(tmp_path)
        backup.acquire()
        backup.commit(NpmrcDocument(["json = false", f"registry = {REGISTRY}"]))
        assert npmrc.read_text() == f"json = false\nregistry = {REGISTRY}\n"
        assert (tmp_path / NPMRC_BACKUP_FILE_NAME).exists()

        backup.restore()

        assert npmrc.read_bytes() == original
        assert not (tmp_path / NPMRC_BACKUP_FILE_NAME).exists()

    def test_restore_removes_generated_file(self, tmp_path):
        backup = NpmrcBackup(tmp_path)
        backup.acquire()
        backup.commit(NpmrcDocument(["json = false"]))

        backup.restore()

        assert not (tmp_path / NPMRC_FILE_NAME).exists()

    def test_restore_is_idempotent(self, tmp_path):
        npmrc = tmp_path / NPMRC_FILE_NAME
        npmrc.write_text("a = b\n")
        backup = NpmrcBackup(tmp_path)
        backup.acquire()
        backup.commit(NpmrcDocument(["json = false"]))

        backup.restore()
        npmrc.write_text("written later\n")
        backup.restore()

        assert npmrc.read_text() == "written later\n"

    def test_restore_without_acquire_is_noop(self, tmp_path):
        NpmrcBackup(tmp_path).restore()
        assert not (tmp_path / NPMRC_FILE_NAME).exists()

    def test_commit_requires_acquire(self, tmp_path):
        with pytest.raises(ConfigMutationError):
            NpmrcBackup(tmp_path).commit(NpmrcDocument(["json = false"]))

    @pytest.mark.skipif(os.name == "nt", reason="POSIX file modes")
    def test_generated_file_is_private(self, tmp_path):
        backup = NpmrcBackup(tmp_path)
        backup.acquire()
        backup.commit(NpmrcDocument(["_authToken = x"]))

        assert (tmp_path / NPMRC_FILE_NAME).stat().st_mode & 0o777 == 0o600

    def test_restore_failure_carries_recovery_hint(self, tmp_path, monkeypatch):
        (tmp_path / NPMRC_FILE_NAME).write_text("a = b\n")
        backup = NpmrcBackup(tmp_path)
        backup.acquire()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("npm_buildinfo.npmrc.os.replace", failing_replace)

        with pytest.raises(NpmrcRestoreError) as exc_info:
            backup.restore()

        message = str(exc_info.value)
        assert message.startswith("Error occurred while restoring project .npmrc file.")
        assert NPMRC_BACKUP_FILE_NAME in message
        assert "disk full" in message
