"""
Full installation runs against FakeHost: a 100 GiB disk end to end, and a run
interrupted after the filesystem phase that is resumed in a new session.
"""

import os

import pytest

from parss_installer.lib.chroot import read_target_file
from parss_installer.phases import build_phases
from parss_installer.pipeline import next_phase_after, run_pipeline
from parss_installer.state_store import SessionState

from .conftest import Script

LUKS_PASSPHRASE = "CorrectHorse42battery"
USER_PASSWORD = "user-Secret-99"
ROOT_PASSWORD = "root-Secret-77"

CONFIGURATION_ANSWERS = ["", "", "", "", "", "", "", "y"]
GATE_ANSWERS = ["/dev/sda", "YES"]
SECRETS = [LUKS_PASSPHRASE, LUKS_PASSPHRASE, USER_PASSWORD, USER_PASSWORD, ROOT_PASSWORD, ROOT_PASSWORD]


@pytest.fixture
def machine(host, monkeypatch):
    host.add_disk("/dev/sda", 100)
    monkeypatch.setattr(os, "geteuid", lambda: 0)
    monkeypatch.setattr("parss_installer.phases.phase_01_preflight.shutil.which", lambda n: f"/usr/bin/{n}")
    return host


def layout(host, mount_root):
    """What ended up on the machine, independent of call history."""

    return {
        "partitions": dict(host.partitions),
        "luks": sorted(host.luks),
        "subvolumes": {k: list(v) for k, v in host.subvolumes.items()},
        "mounts": {os.path.relpath(t, mount_root): v for t, v in host.mounts.items()},
        "fstab": read_target_file(mount_root, "/etc/fstab"),
        "crypttab": read_target_file(mount_root, "/etc/crypttab"),
    }


class TestFullInstall:
    @pytest.fixture
    def installed(self, machine, make_session, config):
        cfg = config.with_overrides(skip_unmount=True)
        script = Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS)
        session = make_session(script, cfg=cfg)
        phases = build_phases()
        result = run_pipeline(session, phases)
        return result, session, phases

    def test_all_phases_succeed(self, installed):
        result, _, phases = installed
        assert result.ok, result.error
        assert result.ran_phases == [p.phase_id for p in phases]

    def test_disk_layout(self, installed, machine):
        assert machine.partitions["/dev/sda"] == {1: "/dev/sda1", 2: "/dev/sda2"}
        assert machine.filesystems["/dev/sda1"] == "vfat"
        assert list(machine.luks) == ["/dev/sda2"]
        assert machine.luks["/dev/sda2"] == LUKS_PASSPHRASE.encode()
        assert machine.filesystems["/dev/mapper/cryptroot"] == "btrfs"

    def test_six_subvolumes_mounted(self, installed, machine, config):
        root = config.mount_root
        assert machine.subvolumes["/dev/mapper/cryptroot"] == ["@", "@home", "@var", "@varcache", "@snapshots", "@log"]
        expected = {
            root: "subvol=@,",
            f"{root}/home": "subvol=@home,",
            f"{root}/var": "subvol=@var,",
            f"{root}/var/cache": "subvol=@varcache,",
            f"{root}/.snapshots": "subvol=@snapshots,",
            f"{root}/var/log": "subvol=@log,",
        }
        for target, prefix in expected.items():
            source, opts = machine.mounts[target]
            assert source == "/dev/mapper/cryptroot"
            assert opts.startswith(prefix)
        assert machine.mounts[f"{root}/boot"] == ("/dev/sda1", "umask=0077")

    def test_state_facts(self, installed):
        _, session, _ = installed
        facts = SessionState.load(session.state.path).facts()
        assert facts["TARGET_DEVICE"] == "/dev/sda"
        assert facts["BOOT_PARTITION"] == "/dev/sda1"
        assert facts["ROOT_PARTITION"] == "/dev/sda2"
        assert facts["LUKS_ROOT_NAME"] == "cryptroot"
        assert facts["ROOT_UUID"] == "uuid-sda2"
        assert facts["ROOT_PARTUUID"] == "partuuid-sda2"
        assert facts["BASE_INSTALLED"] == "true"
        assert facts["GRUB_UNLOCK_VERIFIED"] == "true"
        assert facts["VERIFICATION_ANOMALIES"] == "0"
        assert facts["INSTALLATION_COMPLETE"] == "true"
        assert facts["LAST_COMPLETED_PHASE"] == "13"

    def test_boot_chain(self, installed, config):
        root = config.mount_root
        grub_cfg = read_target_file(root, "/boot/grub/grub.cfg")
        assert "cryptdevice=UUID=uuid-sda2:cryptroot" in grub_cfg
        assert "PARTUUID=partuuid-sda2" in read_target_file(root, "/etc/crypttab")
        assert "encrypt" in read_target_file(root, "/etc/mkinitcpio.conf")

    def test_credentials_never_persisted(self, installed, machine, workdirs):
        _, session, _ = installed
        secrets = (LUKS_PASSPHRASE, USER_PASSWORD, ROOT_PASSWORD)
        state_text = open(session.state.path, encoding="utf-8").read()
        for secret in secrets:
            assert secret not in state_text
            assert not any(secret in arg for argv in machine.calls for arg in argv)
        assert list(workdirs["run"].iterdir()) == []

    def test_unmounts_when_not_skipped(self, machine, make_session, config):
        script = Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS)
        result = run_pipeline(make_session(script), build_phases())

        assert result.ok, result.error
        assert machine.mounts == {}
        assert machine.mappers == {}


class TestFailureAndResume:
    def test_grub_without_cmdline_is_flagged(self, machine, make_session, config):
        machine.grub_drops_cmdline = True
        script = Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS)
        session = make_session(script, cfg=config.with_overrides(skip_unmount=True))

        result = run_pipeline(session, build_phases())

        assert result.ok
        assert session.fact("GRUB_UNLOCK_VERIFIED") == "false"

    def test_base_install_failure_cleans_up(self, machine, make_session, config):
        machine.fail("pacstrap", times=2)
        script = Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS)
        session = make_session(script)

        result = run_pipeline(session, build_phases())

        assert result.failed_phase == "6"
        assert machine.mounts == {}
        assert machine.mappers == {}
        assert SessionState.load(session.state.path).get("LAST_COMPLETED_PHASE") == "5"

    def test_resume_reaches_same_layout(self, machine, make_session, config, monkeypatch):
        cfg = config.with_overrides(skip_unmount=True)
        phases = build_phases()
        first = make_session(Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS[:2]), cfg=cfg)
        upto_filesystem = phases[: [p.phase_id for p in phases].index("5") + 1]
        assert run_pipeline(first, upto_filesystem).ok

        # a new process picks up the session file; mounts and the mapper are still in place
        resumed = make_session(Script(secrets=SECRETS[2:]), cfg=cfg, state_path=first.state.path)
        start = next_phase_after(phases, resumed.fact("LAST_COMPLETED_PHASE"))
        assert start == "6"
        assert run_pipeline(resumed, phases, start_at=start).ok
        interrupted = layout(machine, config.mount_root)

        from .conftest import FakeHost, BLOCK_DEVICE_MODULES, RUN_CMD_MODULES

        fresh = FakeHost()
        fresh.add_disk("/dev/sda", 100)
        for mod in RUN_CMD_MODULES:
            monkeypatch.setattr(f"{mod}.run_cmd", fresh.run)
        for mod in BLOCK_DEVICE_MODULES:
            monkeypatch.setattr(f"{mod}.is_block_device", fresh.is_block_device)
        other_root = config.mount_root + "-fresh"
        fresh_cfg = cfg.with_overrides(mount_root=other_root)
        straight = make_session(Script(CONFIGURATION_ANSWERS + GATE_ANSWERS, SECRETS), cfg=fresh_cfg)
        assert run_pipeline(straight, build_phases()).ok

        expected = layout(fresh, other_root)
        assert interrupted["partitions"] == expected["partitions"]
        assert interrupted["luks"] == expected["luks"]
        assert interrupted["subvolumes"] == expected["subvolumes"]
        assert interrupted["mounts"] == expected["mounts"]
        assert interrupted["fstab"] == expected["fstab"]
        assert interrupted["crypttab"] == expected["crypttab"]
