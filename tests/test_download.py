"""
Unit tests for source downloads, checksums and tarballs.
"""

import hashlib

import pytest

from hardened_installer.lib.download import (
    archive_name,
    create_tarball,
    download,
    extract_tarball,
    is_git_url,
    is_placeholder_checksum,
    verify_sha256,
)


class TestNames:
    """Tests for URL handling."""

    def test_archive_name(self):
        assert archive_name("https://cdn.kernel.org/pub/linux/kernel/v6.x/linux-6.17.tar.xz") == "linux-6.17.tar.xz"

    def test_archive_name_without_file(self):
        with pytest.raises(ValueError):
            archive_name("")

    def test_git_url(self):
        assert is_git_url("https://github.com/madler/zlib.git")
        assert not is_git_url("https://zlib.net/zlib-1.3.tar.gz")

    def test_download_uses_git_for_repositories(self, fake_commands, tmp_path):
        download("https://example.org/x.git", str(tmp_path / "x"))
        download("https://example.org/x.tar.gz", str(tmp_path / "x.tar.gz"))
        assert fake_commands.programs() == ["git", "wget"]
        assert fake_commands.calls[0][:4] == ["git", "clone", "--depth", "1"]


class TestChecksums:
    """Tests for SHA256 verification."""

    @pytest.mark.parametrize("value", ["", "   ", "<sha256sum>"])
    def test_placeholders(self, value):
        assert is_placeholder_checksum(value)

    def test_real_checksum_is_not_placeholder(self):
        assert not is_placeholder_checksum("ab" * 32)

    def test_verify_match(self, tmp_path):
        p = tmp_path / "src.tar.xz"
        p.write_bytes(b"kernel")
        digest = hashlib.sha256(b"kernel").hexdigest()
        assert verify_sha256(str(p), digest.upper()) is True

    def test_verify_mismatch(self, tmp_path):
        p = tmp_path / "src.tar.xz"
        p.write_bytes(b"tampered")
        with pytest.raises(RuntimeError, match="SHA256 mismatch for kernel source"):
            verify_sha256(str(p), "00" * 32, what="kernel source")

    def test_verify_skipped_without_checksum(self, tmp_path, caplog):
        assert verify_sha256(str(tmp_path / "missing"), "<fill me>") is False
        assert "No SHA256 configured" in caplog.text


class TestTarballs:
    """Tests for tar invocations."""

    def test_extract_strips_top_directory(self, fake_commands, tmp_path):
        extract_tarball("/tmp/a.tar.xz", str(tmp_path / "src"))
        assert fake_commands.calls == [["tar", "-xf", "/tmp/a.tar.xz", "-C", str(tmp_path / "src"), "--strip-components=1"]]

    def test_create(self, fake_commands, tmp_path):
        out = create_tarball(str(tmp_path), str(tmp_path / "out/b.tar.xz"))
        assert fake_commands.calls == [["tar", "-cJf", str(out), "-C", str(tmp_path), "."]]

    def test_create_from_missing_dir(self, fake_commands, tmp_path):
        with pytest.raises(RuntimeError, match="Nothing to archive"):
            create_tarball(str(tmp_path / "none"), str(tmp_path / "b.tar.xz"))
