"""
Unit tests for shipped templates and manifests.
"""

import pytest

from hardened_installer.lib.manifests import load_manifest, package_group
from hardened_installer.lib.templates import install_template, render_template, render_text, templates_dir

TEMPLATE_VALUES = {
    "getty-tty1-override.conf": {"INSTALLER_DIR": "/hardened-installer"},
    "grub-40_custom.stub": {"GRUB_SUPERUSER": "root", "GRUB_PASSWORD_HASH": "grub.pbkdf2.sha512.1.AA.BB"},
    "kdeglobals": {"KDE_THEME": "BreezeDark"},
    "ping_target.sh": {"PING_TARGET_IP": "192.0.2.1", "PING_COUNT": 6},
    "start-i2p-locked.sh": {"I2P_PORT": 7070},
}


class TestRendering:
    """Tests for placeholder substitution."""

    def test_unreplaced_placeholder(self):
        with pytest.raises(ValueError, match="__PORT__"):
            render_text("listen __PORT__", {}, name="x")

    def test_values_are_stringified(self):
        assert render_text("n=__COUNT__", {"COUNT": 3}) == "n=3"

    @pytest.mark.parametrize("name", sorted(p.name for p in templates_dir().iterdir() if p.is_file()))
    def test_every_template_renders(self, name):
        text = render_template(name, TEMPLATE_VALUES.get(name, {}))
        assert text.strip()

    def test_missing_template(self):
        with pytest.raises(FileNotFoundError):
            render_template("nope.conf")

    def test_install_template_mode(self, tmp_path):
        p = install_template(str(tmp_path), "ping_target.sh", "/usr/local/bin/ping_target.sh", TEMPLATE_VALUES["ping_target.sh"], mode=0o755)
        assert p == tmp_path / "usr/local/bin/ping_target.sh"
        assert "192.0.2.1" in p.read_text()
        assert p.stat().st_mode & 0o777 == 0o755

    def test_getty_override_launches_tui(self):
        text = render_template("getty-tty1-override.conf", TEMPLATE_VALUES["getty-tty1-override.conf"])
        assert "-m ui.tui --config /hardened-installer/hardened-os.conf" in text

    def test_sysctl_hardening(self):
        text = render_template("90-hardened.conf")
        assert "kernel.kptr_restrict" in text


class TestManifests:
    """Tests for the YAML package and library manifests."""

    @pytest.mark.parametrize(
        "group",
        ["localization", "base", "media_runtime", "desktop_kde", "desktop_xfce", "mac_randomization", "privacy_stack", "installer"],
    )
    def test_groups_exist(self, group):
        assert package_group(group)

    def test_base_has_encryption_and_bootloader(self):
        base = package_group("base")
        assert {"cryptsetup", "cryptsetup-initramfs", "grub-efi-amd64", "ufw"} <= set(base)

    def test_installer_can_run_the_tui(self):
        assert {"python3", "python3-yaml", "python3-rich", "live-boot"} <= set(package_group("installer"))

    def test_unknown_group(self):
        with pytest.raises(KeyError):
            package_group("nope")

    def test_accel_manifest_loads(self):
        assert load_manifest("accel_libs")["libraries"]
