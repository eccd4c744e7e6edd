"""
Unit tests for the hardened-os.conf reader.
"""

import pytest

from hardened_installer.hardened_conf import (
    ConfigError,
    HardenedConfig,
    load_hardened_config,
    parse_conf_text,
    render_conf_text,
)


class TestParseConfText:
    """Tests for the shell-style KEY=value parser."""

    def test_comments_blank_lines_and_export(self):
        text = """
# comment
export OS_HOSTNAME=box

LUKS_ENABLE=1  # trailing comment
"""
        assert parse_conf_text(text, environ={}) == {"OS_HOSTNAME": "box", "LUKS_ENABLE": "1"}

    def test_single_quotes_are_literal(self):
        values = parse_conf_text("A='$HOME and \\n'", environ={"HOME": "/root"})
        assert values["A"] == "$HOME and \\n"

    def test_double_quotes_expand_and_unescape(self):
        text = 'ROOT=/mnt/t\nESP="${ROOT}/boot/efi"\nMSG="say \\"hi\\" \\$x"'
        values = parse_conf_text(text, environ={})
        assert values["ESP"] == "/mnt/t/boot/efi"
        assert values["MSG"] == 'say "hi" $x'

    def test_expansion_prefers_earlier_keys_then_environment(self):
        text = "A=file\nB=$A-$USER\nC=${MISSING:-fallback}"
        values = parse_conf_text(text, environ={"A": "env", "USER": "tester"})
        assert values["B"] == "file-tester"
        assert values["C"] == "fallback"

    def test_backslash_continuation(self):
        values = parse_conf_text('FLAGS="-O2 \\\n-pipe"', environ={})
        assert values["FLAGS"] == "-O2 -pipe"

    def test_multiline_single_quote(self):
        values = parse_conf_text("A='one\ntwo'\nB=3", environ={})
        assert values == {"A": "one\ntwo", "B": "3"}

    @pytest.mark.parametrize("line", ["A=$(whoami)", 'A="`id`"', "A=`id`"])
    def test_command_substitution_rejected(self, line):
        with pytest.raises(ConfigError, match="command substitution"):
            parse_conf_text(line, environ={})

    def test_error_reports_source_and_line(self):
        with pytest.raises(ConfigError) as exc:
            parse_conf_text("A=1\nthis is not an assignment\n", environ={}, source="x.conf")
        assert exc.value.line == 2
        assert str(exc.value).startswith("x.conf:2:")

    def test_unterminated_quote(self):
        with pytest.raises(ConfigError, match="unterminated"):
            parse_conf_text('A="open', environ={})

    def test_text_after_value_rejected(self):
        with pytest.raises(ConfigError, match="unexpected text"):
            parse_conf_text("A=one two", environ={})


class TestHardenedConfig:
    """Tests for typed access and defaults."""

    def test_defaults(self, make_config):
        cfg = make_config()
        assert cfg.root_mountpoint == "/mnt/target"
        assert cfg.esp_mountpoint == "/mnt/target/boot/efi"
        assert cfg.esp_size_mib == 512
        assert cfg.luks_enable is True
        assert cfg.luks_pbkdf == "argon2id"
        assert cfg.debian_release == "bookworm"
        assert cfg.kernel_package_name == "linux-image-amd64"
        assert cfg.grub_bootloader_id == "debian_hardened"
        assert cfg.grub_enable_cryptodisk == "y"
        assert cfg.enable_firewall is True
        assert cfg.enable_tor_i2p_stack is False
        assert cfg.desktop_environment == "none"
        assert cfg.swapfile_size_gb == 8

    def test_esp_follows_root_mountpoint(self, make_config):
        assert make_config("ROOT_MOUNTPOINT=/srv/t/").esp_mountpoint == "/srv/t/boot/efi"

    @pytest.mark.parametrize("value,expected", [("yes", True), ("ON", True), ("n", False), ("false", False)])
    def test_flag_spellings(self, make_config, value, expected):
        assert make_config(f"ENABLE_MAC_RANDOMIZATION={value}").enable_mac_randomization is expected

    def test_invalid_flag(self, make_config):
        with pytest.raises(ConfigError, match="LUKS_ENABLE"):
            make_config("LUKS_ENABLE=maybe").luks_enable

    def test_invalid_integer(self, make_config):
        with pytest.raises(ConfigError, match="ESP_SIZE_MIB"):
            make_config("ESP_SIZE_MIB=big").esp_size_mib

    def test_release_and_mirror_aliases(self, make_config):
        cfg = make_config("DEBIAN_SUITE=trixie\nMIRROR_URL=http://mirror.local/debian")
        assert cfg.debian_release == "trixie"
        assert cfg.debian_mirror == "http://mirror.local/debian"

    def test_redacted_masks_secrets(self, make_config):
        cfg = make_config("GRUB_PASSWORD_PLAINTEXT=s3cret\nROOT_PASSWORD=\nOS_HOSTNAME=h")
        red = cfg.redacted()
        assert red["GRUB_PASSWORD_PLAINTEXT"] == "***"
        assert red["ROOT_PASSWORD"] == ""
        assert red["OS_HOSTNAME"] == "h"

    def test_accel_keys(self, make_config):
        cfg = make_config("ACCEL_BUILD_ZSTD=1\nZSTD_SOURCE_URL=https://x/zstd.tar.gz")
        assert cfg.accel_build_enabled("ZSTD")
        assert not cfg.accel_build_enabled("OPENSSL")
        assert cfg.accel_source_url("ZSTD") == "https://x/zstd.tar.gz"


class TestLoadAndRender:
    """Tests for reading config files and writing them back."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_hardened_config(str(tmp_path / "nope.conf"))

    def test_load(self, tmp_path):
        p = tmp_path / "hardened-os.conf"
        p.write_text("OS_HOSTNAME=fortress\n", encoding="utf-8")
        cfg = load_hardened_config(str(p), environ={})
        assert cfg.os_hostname == "fortress"
        assert cfg.path == str(p)

    def test_render_parses_back(self):
        values = {"A": "plain", "B": "has space", "C": "it's $quoted"}
        assert parse_conf_text(render_conf_text(values), environ={}) == values

    def test_render_skips_secrets(self):
        text = render_conf_text({"ROOT_PASSWORD": "pw", "OS_HOSTNAME": "h"})
        assert "ROOT_PASSWORD" not in text
        assert "OS_HOSTNAME=h" in text
        assert "ROOT_PASSWORD" in render_conf_text({"ROOT_PASSWORD": "pw"}, skip_secrets=False)

    def test_config_is_frozen(self):
        cfg = HardenedConfig(raw={})
        with pytest.raises(AttributeError):
            cfg.raw = {"A": "1"}
