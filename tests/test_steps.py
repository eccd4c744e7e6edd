"""
Unit tests for individual target installer steps.
"""

import os
from pathlib import Path
from types import SimpleNamespace

import pytest

from hardened_installer.context import InstallContext
from hardened_installer.hardened_conf import HardenedConfig, parse_conf_text
from hardened_installer.state_store import ensure_defaults
from hardened_installer.steps import _base
from hardened_installer.steps import (
    AccountsStep,
    BootloaderStep,
    ConfigureSystemStep,
    DesktopStep,
    FinalizeStep,
    FstabCrypttabStep,
    InstallPackagesStep,
    PreflightStep,
    ServicesStep,
    SetupLuksStep,
    StageArtifactsStep,
    SysctlStep,
)
from hardened_installer.steps.step_05_preflight import required_commands
from hardened_installer.steps.step_50_install_packages import local_debs


@pytest.fixture
def make_ctx(tmp_path):
    def _make(text="", **kw):
        raw = parse_conf_text(f"ROOT_MOUNTPOINT={tmp_path / 'target'}\n{text}", environ={})
        kw.setdefault("disk", "/dev/sdz")
        kw.setdefault("hostname", "fortress")
        kw.setdefault("passphrase", "pw")
        kw.setdefault("source_root", str(tmp_path / "live"))
        return InstallContext(cfg=HardenedConfig(raw=raw), **kw)

    return _make


@pytest.fixture(autouse=True)
def host(monkeypatch):
    """What the host reports for the target mount point and LUKS mapper."""
    live = SimpleNamespace(mounted=True, mapper_open=True)
    monkeypatch.setattr(_base, "is_mountpoint", lambda path: live.mounted)
    monkeypatch.setattr(_base, "mapper_exists", lambda mapper: live.mapper_open)
    return live


def _attached_state(ctx):
    state = ensure_defaults({})
    state["execution"]["mounts"].update(
        {
            "target_root": ctx.target_root,
            "esp_part": "/dev/sdz1",
            "root_part": "/dev/sdz2",
            "luks_part": "/dev/sdz2",
            "luks_mapper": "cryptroot",
            "luks_open": True,
            "root_dev": "/dev/mapper/cryptroot",
            "target_mounted": True,
        }
    )
    return state


class TestContext:
    """Tests for InstallContext paths."""

    def test_esp_inside_target(self, make_ctx):
        assert make_ctx().esp_in_target == "/boot/efi"

    def test_esp_outside_target(self, make_ctx):
        ctx = make_ctx("ESP_MOUNTPOINT=/elsewhere")
        with pytest.raises(RuntimeError, match="not below"):
            ctx.esp_in_target

    def test_passphrase_not_in_repr_or_state(self, make_ctx):
        ctx = make_ctx(passphrase="very-secret", dry_run=True)
        assert "very-secret" not in repr(ctx)
        assert "very-secret" not in str(ctx.state_config())


class TestPreflight:
    """Tests for input validation before touching the disk."""

    @pytest.mark.parametrize("hostname", ["", "-bad", "has space", "a" * 64, "dots.not.allowed"])
    def test_invalid_hostname(self, make_ctx, hostname):
        with pytest.raises(RuntimeError, match="Invalid hostname"):
            PreflightStep(make_ctx(hostname=hostname, dry_run=True)).run(ensure_defaults({}))

    def test_passphrase_required_with_luks(self, make_ctx):
        with pytest.raises(RuntimeError, match="passphrase"):
            PreflightStep(make_ctx(passphrase="", dry_run=True)).run(ensure_defaults({}))

    def test_passphrase_optional_without_luks(self, make_ctx):
        state = PreflightStep(make_ctx("LUKS_ENABLE=0", passphrase="", dry_run=True)).run(ensure_defaults({}))
        assert state["execution"]["mounts"]["disk"] == "/dev/sdz"

    def test_required_commands(self):
        assert "cryptsetup" in required_commands(root_fs_type="ext4", luks=True)
        cmds = required_commands(root_fs_type="xfs", luks=False)
        assert "mkfs.xfs" in cmds
        assert "cryptsetup" not in cmds


class TestLuksStep:
    """Tests for the encryption step."""

    def test_disabled_uses_raw_partition(self, make_ctx, fake_commands, caplog):
        state = ensure_defaults({})
        state["execution"]["mounts"]["root_part"] = "/dev/sdz2"
        SetupLuksStep(make_ctx("LUKS_ENABLE=0")).run(state)
        m = state["execution"]["mounts"]
        assert m["root_dev"] == "/dev/sdz2"
        assert m["luks_mapper"] is None
        assert fake_commands.calls == []
        assert "NOT be encrypted" in caplog.text

    def test_requires_partition_step(self, make_ctx):
        with pytest.raises(RuntimeError, match="10_partition_disk"):
            SetupLuksStep(make_ctx(dry_run=True)).run(ensure_defaults({}))


class TestResume:
    """Tests for reattaching the target on a resumed run."""

    def test_attach_reopens_and_remounts(self, make_ctx, fake_commands, host):
        host.mounted = host.mapper_open = False
        ctx = make_ctx()
        state = _attached_state(ctx)
        state["execution"]["mounts"].update({"luks_open": False, "target_mounted": False})

        SysctlStep(ctx).run(state)

        assert fake_commands.programs()[:3] == ["cryptsetup", "mount", "mount"]
        assert fake_commands.inputs[0] == "pw"
        m = state["execution"]["mounts"]
        assert m["luks_open"] is True
        assert m["target_mounted"] is True
        assert Path(ctx.target("/etc/sysctl.d/90-hardened.conf")).is_file()

    def test_attached_target_is_left_alone(self, make_ctx, fake_commands):
        ctx = make_ctx()
        SysctlStep(ctx).run(_attached_state(ctx))
        assert fake_commands.calls == []

    def test_stale_flags_after_reboot(self, make_ctx, fake_commands, host, caplog):
        host.mounted = host.mapper_open = False
        ctx = make_ctx()

        state = SysctlStep(ctx).run(_attached_state(ctx))

        assert fake_commands.programs()[:3] == ["cryptsetup", "mount", "mount"]
        assert fake_commands.calls[1] == ["mount", "/dev/mapper/cryptroot", ctx.target_root]
        assert "not a mount point" in caplog.text
        assert state["execution"]["mounts"]["target_mounted"] is True

    def test_mapper_left_open_is_not_reopened(self, make_ctx, fake_commands, host):
        host.mounted = False
        ctx = make_ctx()
        state = _attached_state(ctx)
        state["execution"]["mounts"].update({"luks_open": False, "target_mounted": False})

        SysctlStep(ctx).run(state)

        assert "cryptsetup" not in fake_commands.programs()
        assert fake_commands.programs()[:2] == ["mount", "mount"]
        assert state["execution"]["mounts"]["luks_open"] is True

    def test_dry_run_trusts_flags(self, make_ctx, fake_commands, host):
        host.mounted = host.mapper_open = False
        ctx = make_ctx(dry_run=True)
        SysctlStep(ctx).run(_attached_state(ctx))
        assert fake_commands.calls == []


class TestFinalize:
    """Tests for unmounting and closing."""

    def test_unmounts_and_closes(self, make_ctx, fake_commands):
        ctx = make_ctx()
        state = FinalizeStep(ctx).run(_attached_state(ctx))
        programs = fake_commands.programs()
        assert programs.index("sync") < programs.index("cryptsetup")
        assert ["umount", "-R", ctx.target_root] in fake_commands.calls
        assert fake_commands.calls[-1] == ["cryptsetup", "close", "cryptroot"]
        m = state["execution"]["mounts"]
        assert m["target_mounted"] is False
        assert m["luks_open"] is False

    def test_nothing_to_do(self, make_ctx, fake_commands):
        FinalizeStep(make_ctx()).run(ensure_defaults({}))
        assert fake_commands.calls == []

    def test_failed_close_keeps_flag(self, make_ctx, fake_commands):
        ctx = make_ctx()
        fake_commands.script("cryptsetup", returncode=5)
        state = FinalizeStep(ctx).run(_attached_state(ctx))
        assert state["execution"]["mounts"]["luks_open"] is True


class TestStageArtifacts:
    """Tests for copying pre-built artifacts into the target."""

    def test_copies_what_exists(self, make_ctx, tmp_path):
        ctx = make_ctx()
        live = tmp_path / "live"
        (live / "usr/local/bin").mkdir(parents=True)
        (live / "usr/local/bin/image_harden_cli").write_bytes(b"\x7fELF")
        (live / "debs").mkdir()
        (live / "debs/tool_1.0_amd64.deb").write_bytes(b"")
        (live / "debs/README").write_text("x")

        state = StageArtifactsStep(ctx).run(_attached_state(ctx))

        staged = state["execution"]["decisions"]["staged"]
        assert staged["image_harden_cli"] is True
        assert staged["local_debs"] is True
        assert staged["media_wasm"] is False
        target = tmp_path / "target"
        assert (target / "usr/local/bin/image_harden_cli").stat().st_mode & 0o777 == 0o755
        assert (target / "usr/local/bin/run_image_harden.sh").is_file()
        assert (target / "debs/tool_1.0_amd64.deb").is_file()
        assert not (target / "debs/README").exists()

    def test_local_debs_skip_debug_packages(self, tmp_path):
        d = tmp_path / "opt/debs"
        d.mkdir(parents=True)
        for name in ["b_1_amd64.deb", "a_1_amd64.deb", "a-dbg_1_amd64.deb", "notes.txt"]:
            (d / name).write_text("")
        assert local_debs(str(tmp_path), "/opt/debs/") == ["/opt/debs/a_1_amd64.deb", "/opt/debs/b_1_amd64.deb"]


class TestInstallPackages:
    """Tests for kernel and package selection."""

    def test_stock_kernel(self, make_ctx):
        ctx = make_ctx(dry_run=True)
        state = InstallPackagesStep(ctx).run(_attached_state(ctx))
        d = state["execution"]["decisions"]
        assert d["kernel"] == {"source": "stock", "packages": ["linux-image-amd64"]}
        assert d["accel_libs"] == "skipped"
        assert d["drivers"] == {"audio": "generated", "video": "generated"}

    def test_prebuilt_custom_kernel_replaces_stock(self, make_ctx, fake_commands, tmp_path):
        ctx = make_ctx("PREBUILD_HARDENED_DRIVERS=0\nENABLE_MEDIA_PROCESSOR=0")
        debs = tmp_path / "target/opt/custom-kernel-debs"
        debs.mkdir(parents=True)
        (debs / "linux-image-6.17.0_1_amd64.deb").write_bytes(b"")

        state = InstallPackagesStep(ctx).run(_attached_state(ctx))

        assert state["execution"]["decisions"]["kernel"]["source"] == "prebuilt"
        assert ["chroot", ctx.target_root, "dpkg", "-i", "/opt/custom-kernel-debs/linux-image-6.17.0_1_amd64.deb"] in fake_commands.calls
        purge = fake_commands.find("apt-get")
        assert ["chroot", ctx.target_root, "apt-get", "remove", "--purge", "-y", "linux-image-amd64"] in purge


class TestServices:
    """Tests for firewall and service decisions."""

    def test_firewall_rules_follow_features(self, make_ctx, fake_commands):
        ctx = make_ctx("ENABLE_MEDIA_PROCESSOR=0\nENABLE_TOR_I2P_STACK=0\nI2P_PORT=7070")
        ServicesStep(ctx).run(_attached_state(ctx))
        ufw = [a[2:] for a in fake_commands.find("ufw")]
        assert ["ufw", "allow", "7070/tcp"] not in ufw
        assert ufw[-1] == ["ufw", "--force", "enable"]

    def test_firewall_disabled(self, make_ctx, fake_commands):
        ctx = make_ctx("ENABLE_MEDIA_PROCESSOR=0\nENABLE_FIREWALL=0")
        state = ServicesStep(ctx).run(_attached_state(ctx))
        assert fake_commands.find("ufw") == []
        assert state["execution"]["decisions"]["firewall"] is False


class TestFstabStep:
    """Tests for fstab and crypttab generation."""

    def test_writes_both_tables(self, make_ctx, fake_commands, tmp_path):
        fake_commands.script("blkid", stdout="UUID-1\n")
        ctx = make_ctx("SWAPFILE_SIZE_GB=0")
        FstabCrypttabStep(ctx).run(_attached_state(ctx))

        crypttab = (tmp_path / "target/etc/crypttab").read_text().splitlines()[1].split()
        assert crypttab == ["cryptroot", "UUID=UUID-1", "none", "luks,discard,initramfs"]
        fstab = [line.split() for line in (tmp_path / "target/etc/fstab").read_text().splitlines()[1:]]
        assert fstab == [
            ["UUID=UUID-1", "/", "ext4", "errors=remount-ro", "0", "1"],
            ["UUID=UUID-1", "/boot/efi", "vfat", "umask=0077", "0", "1"],
        ]

    def test_swapfile(self, make_ctx, fake_commands, tmp_path):
        fake_commands.script("blkid", stdout="UUID-1\n")
        ctx = make_ctx("SWAPFILE_SIZE_GB=2")
        FstabCrypttabStep(ctx).run(_attached_state(ctx))
        assert ["fallocate", "-l", "2G", str(tmp_path / "target/swapfile")] in fake_commands.calls
        assert "/swapfile" in (tmp_path / "target/etc/fstab").read_text()


class TestConfigureSystem:
    """Tests for hostname, timezone and locale."""

    def test_hostname_hosts_and_timezone(self, make_ctx, fake_commands, tmp_path):
        target = tmp_path / "target"
        (target / "usr/share/zoneinfo/Europe").mkdir(parents=True)
        (target / "usr/share/zoneinfo/Europe/Berlin").write_bytes(b"TZif")
        (target / "etc").mkdir()
        (target / "etc/localtime").write_text("stale")
        ctx = make_ctx("OS_TIMEZONE=Europe/Berlin\nOS_LOCALE=de_DE.UTF-8")

        ConfigureSystemStep(ctx).run(_attached_state(ctx))

        assert (target / "etc/hostname").read_text() == "fortress\n"
        assert "127.0.1.1\tfortress" in (target / "etc/hosts").read_text().splitlines()
        assert os.readlink(target / "etc/localtime") == "/usr/share/zoneinfo/Europe/Berlin"
        assert (target / "etc/timezone").read_text() == "Europe/Berlin\n"
        assert "de_DE.UTF-8 UTF-8" in (target / "etc/locale.gen").read_text().splitlines()
        assert ["chroot", ctx.target_root, "update-locale", "LANG=de_DE.UTF-8"] in fake_commands.calls

    def test_unknown_timezone(self, make_ctx, fake_commands):
        ctx = make_ctx("OS_TIMEZONE=Mars/Olympus")
        with pytest.raises(RuntimeError, match="Unknown timezone"):
            ConfigureSystemStep(ctx).run(_attached_state(ctx))
        # chroot binds are released on the way out
        assert fake_commands.calls[-1][:2] == ["umount", "-lf"]


class TestDesktop:
    """Tests for the optional desktop environment."""

    def test_none_touches_nothing(self, make_ctx, fake_commands):
        state = DesktopStep(make_ctx()).run(ensure_defaults({}))
        assert fake_commands.calls == []
        assert state["execution"]["decisions"]["desktop"] == "none"

    def test_unknown_value_is_skipped(self, make_ctx, fake_commands, caplog):
        state = DesktopStep(make_ctx("DESKTOP_ENVIRONMENT=gnome")).run(ensure_defaults({}))
        assert fake_commands.calls == []
        assert "Unknown DESKTOP_ENVIRONMENT" in caplog.text
        assert state["execution"]["decisions"]["desktop"] == "none"

    def test_xfce_uses_lightdm(self, make_ctx, fake_commands, tmp_path):
        ctx = make_ctx("DESKTOP_ENVIRONMENT=xfce")
        state = DesktopStep(ctx).run(_attached_state(ctx))

        install = [a for a in fake_commands.find("apt-get") if a[3] == "install"]
        assert "lightdm" in install[0]
        assert "--no-install-recommends" not in install[0]
        assert ["chroot", ctx.target_root, "systemctl", "enable", "lightdm"] in fake_commands.calls
        assert ["chroot", ctx.target_root, "systemctl", "set-default", "graphical.target"] in fake_commands.calls
        assert not (tmp_path / "target/etc/skel/.config/kdeglobals").exists()
        assert state["execution"]["decisions"]["desktop"] == "xfce"

    def test_kde_theme(self, make_ctx, fake_commands, tmp_path):
        ctx = make_ctx("DESKTOP_ENVIRONMENT=KDE\nKDE_DEFAULT_THEME=Nordic")
        DesktopStep(ctx).run(_attached_state(ctx))

        assert ["chroot", ctx.target_root, "systemctl", "enable", "sddm"] in fake_commands.calls
        kdeglobals = (tmp_path / "target/etc/skel/.config/kdeglobals").read_text()
        assert "ColorScheme=Nordic" in kdeglobals.splitlines()


class TestBootloader:
    """Tests for GRUB configuration."""

    PBKDF2_OUTPUT = (
        "Enter password: \nReenter password: \n"
        "PBKDF2 hash of your password is grub.pbkdf2.sha512.10000.AABB.CCDD\n"
    )

    def test_password_protected_menu(self, make_ctx, fake_commands, tmp_path):
        fake_commands.script("grub-mkpasswd-pbkdf2", stdout=self.PBKDF2_OUTPUT)
        ctx = make_ctx("GRUB_PASSWORD_PLAINTEXT=s3cret\nGRUB_SUPERUSER=admin")

        state = BootloaderStep(ctx).run(_attached_state(ctx))

        custom = tmp_path / "target/etc/grub.d/40_custom"
        assert "password_pbkdf2 admin grub.pbkdf2.sha512.10000.AABB.CCDD" in custom.read_text().splitlines()
        assert custom.stat().st_mode & 0o777 == 0o755
        i = fake_commands.programs().index("grub-mkpasswd-pbkdf2")
        assert fake_commands.inputs[i] == "s3cret\ns3cret\n"
        assert not any("s3cret" in arg for argv in fake_commands.calls for arg in argv)
        assert "GRUB_ENABLE_CRYPTODISK=y" in (tmp_path / "target/etc/default/grub").read_text().splitlines()
        assert state["execution"]["decisions"]["grub_password"] is True

    def test_no_password_warns(self, make_ctx, fake_commands, tmp_path, caplog):
        ctx = make_ctx("LUKS_ENABLE=0\nGRUB_BOOTLOADER_ID=fortress")

        state = BootloaderStep(ctx).run(_attached_state(ctx))

        assert "not password protected" in caplog.text
        assert "grub-mkpasswd-pbkdf2" not in fake_commands.programs()
        assert not (tmp_path / "target/etc/grub.d/40_custom").exists()
        assert "GRUB_ENABLE_CRYPTODISK" not in (tmp_path / "target/etc/default/grub").read_text()
        install = fake_commands.find("grub-install")[0]
        assert "--efi-directory=/boot/efi" in install
        assert "--bootloader-id=fortress" in install
        assert state["execution"]["decisions"]["grub_password"] is False


class TestAccounts:
    """Tests for the root account."""

    def test_password_goes_through_stdin(self, make_ctx, fake_commands):
        ctx = make_ctx("ROOT_PASSWORD=hunter2")
        state = AccountsStep(ctx).run(_attached_state(ctx))

        i = fake_commands.programs().index("chpasswd")
        assert fake_commands.calls[i] == ["chroot", ctx.target_root, "chpasswd"]
        assert fake_commands.inputs[i] == "root:hunter2\n"
        assert not any("hunter2" in arg for argv in fake_commands.calls for arg in argv)
        assert state["execution"]["decisions"]["root_locked"] is False

    def test_unset_password_locks_root(self, make_ctx, fake_commands, caplog):
        ctx = make_ctx()
        state = AccountsStep(ctx).run(_attached_state(ctx))

        assert ["chroot", ctx.target_root, "passwd", "-l", "root"] in fake_commands.calls
        assert "chpasswd" not in fake_commands.programs()
        assert "locking the root account" in caplog.text
        assert state["execution"]["decisions"]["root_locked"] is True
