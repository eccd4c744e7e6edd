"""
Tests for the hardened-installer entry point.
"""

import io
import json

import pytest

from hardened_installer import main as main_module
from hardened_installer.context import InstallContext
from hardened_installer.main import build_steps, main, read_passphrase, run


class TestCli:
    """Tests for command-line validation."""

    @pytest.mark.parametrize(
        "argv",
        [
            ["--disk", "/dev/sdz", "--hostname", "h"],
            ["--config", "c.conf", "--hostname", "h"],
            ["--config", "c.conf", "--disk", "/dev/sdz"],
        ],
    )
    def test_missing_required_flag(self, argv, capsys):
        with pytest.raises(SystemExit) as exc:
            main([*argv, "--luks-passphrase-stdin"])
        assert exc.value.code == 2

    def test_passphrase_must_come_from_stdin(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--config", "c.conf", "--disk", "/dev/sdz", "--hostname", "h"])
        assert exc.value.code == 2
        assert "--luks-passphrase-stdin" in capsys.readouterr().err

    def test_empty_passphrase_refused(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("\n"))
        with pytest.raises(SystemExit) as exc:
            main(["--config", "c.conf", "--disk", "/dev/sdz", "--hostname", "h", "--luks-passphrase-stdin"])
        assert exc.value.code == 2
        assert "Empty LUKS passphrase" in capsys.readouterr().err

    def test_flags_reach_run(self, monkeypatch):
        seen = {}
        monkeypatch.setattr(main_module, "run", lambda **kw: seen.update(kw))
        monkeypatch.setattr("sys.stdin", io.StringIO("pass phrase\nignored\n"))
        rc = main(
            [
                "--config", "c.conf",
                "--disk", "/dev/sdz",
                "--hostname", "h",
                "--luks-passphrase-stdin",
                "--start-at", "50_install_packages",
                "--dry-run",
            ]
        )
        assert rc == 0
        assert seen["passphrase"] == "pass phrase"
        assert seen["start_at"] == "50_install_packages"
        assert seen["dry_run"] is True


class TestReadPassphrase:
    """Tests for reading the passphrase from stdin."""

    def test_first_line_only(self):
        assert read_passphrase(io.StringIO("a b c\r\nsecond\n")) == "a b c"

    def test_keeps_inner_whitespace(self):
        assert read_passphrase(io.StringIO("  spaced  \n")) == "  spaced  "

    def test_empty(self):
        with pytest.raises(ValueError):
            read_passphrase(io.StringIO(""))


class TestDryRun:
    """End-to-end dry run of the whole target pipeline."""

    def test_full_pipeline(self, config_file, tmp_path):
        state_path = tmp_path / "state.json"
        state = run(
            config_path=str(config_file("DESKTOP_ENVIRONMENT=kde\nENABLE_TOR_I2P_STACK=1\nENABLE_MAC_RANDOMIZATION=1\n")),
            disk="/dev/sdz",
            hostname="fortress",
            passphrase="correct-horse-battery",
            state_path=str(state_path),
            log_path=str(tmp_path / "install.log"),
            dry_run=True,
            source_root=str(tmp_path / "live"),
        )

        exe = state["execution"]
        assert exe["summary"]["ran_steps"][0] == "05_preflight"
        assert exe["summary"]["ran_steps"][-1] == "90_finalize"
        assert exe["mounts"]["root_dev"] == "/dev/mapper/cryptroot"
        assert exe["mounts"]["target_mounted"] is False
        assert exe["decisions"]["desktop"] == "kde"

        saved = json.loads(state_path.read_text())
        assert saved["config"]["hostname"] == "fortress"
        assert "correct-horse-battery" not in json.dumps(saved["config"])
        assert saved["execution"]["completed_steps"] == exe["summary"]["ran_steps"]

    def test_resume_skips_completed(self, config_file, tmp_path):
        kwargs = dict(
            config_path=str(config_file()),
            disk="/dev/sdz",
            hostname="fortress",
            passphrase="pw",
            state_path=str(tmp_path / "state.json"),
            log_path=str(tmp_path / "install.log"),
            dry_run=True,
            source_root=str(tmp_path / "live"),
        )
        run(stop_after="20_filesystems", **kwargs)
        state = run(**kwargs)
        summary = state["execution"]["summary"]
        assert summary["skipped_steps"] == ["05_preflight", "10_partition_disk", "15_setup_luks", "20_filesystems"]
        assert summary["ran_steps"][0] == "30_bootstrap_rootfs"

    def test_other_disk_refuses_recorded_state(self, config_file, tmp_path):
        state_path = tmp_path / "state.json"
        kwargs = dict(
            config_path=str(config_file()),
            hostname="fortress",
            passphrase="pw",
            state_path=str(state_path),
            log_path=str(tmp_path / "install.log"),
            dry_run=True,
            source_root=str(tmp_path / "live"),
        )
        run(disk="/dev/sda", stop_after="20_filesystems", **kwargs)
        before = state_path.read_text()

        with pytest.raises(RuntimeError, match="disk=/dev/sda"):
            run(disk="/dev/sdb", **kwargs)
        assert state_path.read_text() == before
        assert main_module.recorded_disk(str(state_path)) == "/dev/sda"

        state = run(disk="/dev/sdb", force=True, **kwargs)
        exe = state["execution"]
        assert exe["summary"]["skipped_steps"] == []
        assert exe["mounts"]["esp_part"] == "/dev/sdb1"
        assert exe["mounts"]["disk"] == "/dev/sdb"

    def test_failure_is_recorded(self, config_file, tmp_path):
        state_path = tmp_path / "state.json"
        with pytest.raises(RuntimeError, match="Invalid hostname"):
            run(
                config_path=str(config_file()),
                disk="/dev/sdz",
                hostname="bad host",
                passphrase="pw",
                state_path=str(state_path),
                log_path=str(tmp_path / "install.log"),
                dry_run=True,
            )
        saved = json.loads(state_path.read_text())
        assert saved["execution"]["errors"][-1]["step"] == "05_preflight"

    def test_step_ids_are_ordered_and_unique(self, make_config):
        steps = build_steps(InstallContext(cfg=make_config(), disk="/dev/sdz", hostname="h"))
        ids = [s.step_id for s in steps]
        assert ids == sorted(ids)
        assert len(ids) == len(set(ids)) == 16
