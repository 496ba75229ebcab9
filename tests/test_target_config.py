"""
Tests for the files written into the target: fstab, crypttab, mkinitcpio and GRUB.
"""

import pytest

from parss_installer.errors import FatalError
from parss_installer.lib import bootloader
from parss_installer.lib.chroot import read_target_file, write_target_file
from parss_installer.lib.fstab import (
    CrypttabEntry,
    FstabEntry,
    parse_crypttab,
    parse_fstab,
    render_crypttab,
    render_fstab,
)

from .conftest import DEFAULT_GRUB, DEFAULT_MKINITCPIO


class TestFstab:
    def test_render_and_parse(self):
        text = render_fstab(
            [
                FstabEntry("UUID=abc", "/", "btrfs", "subvol=@,compress=zstd"),
                FstabEntry("UUID=ESP1", "/boot", "vfat", "umask=0077", 0, 2),
            ]
        )
        assert text.startswith("# /etc/fstab")
        entries = parse_fstab(text)
        assert [e.mountpoint for e in entries] == ["/", "/boot"]
        assert entries[1].passno == 2
        assert entries[0].options == "subvol=@,compress=zstd"

    def test_parse_skips_comments_and_short_lines(self):
        assert parse_fstab("# x\n\nUUID=a /\nUUID=b /home btrfs defaults\n") == [
            FstabEntry("UUID=b", "/home", "btrfs", "defaults")
        ]

    def test_crypttab_line(self):
        text = render_crypttab([CrypttabEntry("cryptroot", "PARTUUID=1234")])
        (entry,) = parse_crypttab(text)
        assert entry.name == "cryptroot"
        assert entry.device == "PARTUUID=1234"
        assert entry.keyfile == "none"
        assert entry.options == "luks,x-systemd.device-timeout=10"


class TestShellVars:
    def test_replaces_existing(self):
        out = bootloader.set_shell_var(DEFAULT_MKINITCPIO, "HOOKS", "(base encrypt)")
        assert bootloader.get_shell_var(out, "HOOKS") == "(base encrypt)"
        assert out.count("HOOKS=") == 1

    def test_uncomments(self):
        out = bootloader.set_shell_var(DEFAULT_GRUB, "GRUB_ENABLE_CRYPTODISK", "y")
        assert "GRUB_ENABLE_CRYPTODISK=y" in out.splitlines()
        assert "#GRUB_ENABLE_CRYPTODISK=y" not in out

    def test_appends_missing(self):
        out = bootloader.set_shell_var("A=1", "B", "2")
        assert out == "A=1\nB=2\n"

    def test_collapses_duplicates(self):
        out = bootloader.set_shell_var("X=1\nX=2\n", "X", "3")
        assert out == "X=3\n"

    def test_cmdline(self):
        line = bootloader.cryptdevice_cmdline("uuid-1", "cryptroot")
        assert line.startswith("cryptdevice=UUID=uuid-1:cryptroot ")
        assert "root=/dev/mapper/cryptroot" in line
        assert "rootflags=subvol=@" in line


class TestBootFiles:
    @pytest.fixture
    def target(self, tmp_path):
        root = str(tmp_path / "root")
        write_target_file(root, bootloader.MKINITCPIO_CONF, DEFAULT_MKINITCPIO)
        write_target_file(root, bootloader.GRUB_DEFAULT, DEFAULT_GRUB)
        return root

    def test_mkinitcpio_hook_order(self, target):
        bootloader.configure_mkinitcpio(target)

        text = read_target_file(target, bootloader.MKINITCPIO_CONF)
        hooks = bootloader.get_shell_var(text, "HOOKS").strip("()").split()
        assert hooks.index("block") < hooks.index("encrypt") < hooks.index("filesystems")
        assert bootloader.get_shell_var(text, "MODULES") == "(btrfs)"
        assert read_target_file(target, bootloader.MKINITCPIO_CONF + ".bak") == DEFAULT_MKINITCPIO

    def test_mkinitcpio_missing_is_fatal(self, tmp_path):
        with pytest.raises(FatalError, match="is the base system installed"):
            bootloader.configure_mkinitcpio(str(tmp_path))

    def test_grub_defaults(self, target):
        bootloader.configure_grub_defaults(target, "uuid-sda2", "cryptroot")

        text = read_target_file(target, bootloader.GRUB_DEFAULT)
        assert bootloader.get_shell_var(text, "GRUB_CMDLINE_LINUX") == (
            '"cryptdevice=UUID=uuid-sda2:cryptroot root=/dev/mapper/cryptroot rootflags=subvol=@ quiet"'
        )
        assert bootloader.get_shell_var(text, "GRUB_ENABLE_CRYPTODISK") == "y"
        # the default line is left alone
        assert bootloader.get_shell_var(text, "GRUB_CMDLINE_LINUX_DEFAULT") == '"loglevel=3 quiet"'

    def test_unlock_check(self, target):
        write_target_file(target, bootloader.GRUB_CFG, "linux /vmlinuz cryptdevice=UUID=u:cryptroot\n")
        assert bootloader.grub_config_has_unlock(target, "u", "cryptroot") is True
        assert bootloader.grub_config_has_unlock(target, "other", "cryptroot") is False

    def test_unlock_check_needs_grub_cfg(self, target):
        with pytest.raises(FatalError, match="not found"):
            bootloader.grub_config_has_unlock(target, "u", "cryptroot")

    def test_initramfs_must_exist(self, host, target):
        host.fail("arch-chroot", target, "mkinitcpio")
        with pytest.raises(FatalError, match="Initramfs generation failed"):
            bootloader.regenerate_initramfs(target, "linux-zen")

    def test_initramfs_image_checked(self, monkeypatch, target):
        monkeypatch.setattr(
            "parss_installer.lib.bootloader.chroot_cmd", lambda root, argv, **kw: None
        )
        with pytest.raises(FatalError, match="initramfs-linux-zen.img not found"):
            bootloader.regenerate_initramfs(target, "linux-zen")
