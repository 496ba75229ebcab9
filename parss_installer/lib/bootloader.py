from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import CommandError, FatalError
from ..logging_utils import log_success
from .chroot import chroot_cmd, read_target_file, target_path, write_target_file

logger = logging.getLogger(__name__)

MKINITCPIO_CONF = "/etc/mkinitcpio.conf"
GRUB_DEFAULT = "/etc/default/grub"
GRUB_CFG = "/boot/grub/grub.cfg"
BOOTLOADER_ID = "GRUB"

MKINITCPIO_MODULES = "(btrfs)"
# The encrypt hook has to come after block and before filesystems.
MKINITCPIO_HOOKS = "(base udev autodetect microcode modconf kms keyboard keymap consolefont block encrypt filesystems fsck)"

GRUB_SETTINGS: Dict[str, str] = {
    "GRUB_ENABLE_CRYPTODISK": "y",
    "GRUB_TIMEOUT": "5",
    "GRUB_TIMEOUT_STYLE": "menu",
}


def set_shell_var(text: str, key: str, value: str) -> str:
    """Replace KEY=... (also a commented-out #KEY=...) or append it."""

    pattern = re.compile(rf"^#?\s*{re.escape(key)}=.*$", re.MULTILINE)
    line = f"{key}={value}"
    if pattern.search(text):
        # Keep only the first occurrence; drop later duplicates.
        out: List[str] = []
        done = False
        for existing in text.splitlines():
            if pattern.match(existing):
                if not done:
                    out.append(line)
                    done = True
                continue
            out.append(existing)
        return "\n".join(out) + "\n"
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def get_shell_var(text: str, key: str) -> Optional[str]:
    m = re.search(rf"^{re.escape(key)}=(.*)$", text, re.MULTILINE)
    return m.group(1) if m else None


def cryptdevice_cmdline(root_uuid: str, luks_name: str) -> str:
    return f"cryptdevice=UUID={root_uuid}:{luks_name} root=/dev/mapper/{luks_name} rootflags=subvol=@ quiet"


def configure_mkinitcpio(target_root: str) -> str:
    text = read_target_file(target_root, MKINITCPIO_CONF)
    if text is None:
        raise FatalError(f"{MKINITCPIO_CONF} not found in {target_root}; is the base system installed?")
    src = target_path(target_root, MKINITCPIO_CONF)
    shutil.copy2(src, str(src) + ".bak")

    text = set_shell_var(text, "MODULES", MKINITCPIO_MODULES)
    text = set_shell_var(text, "HOOKS", MKINITCPIO_HOOKS)
    write_target_file(target_root, MKINITCPIO_CONF, text)
    for key in ("MODULES", "HOOKS"):
        logger.info("  %s=%s", key, get_shell_var(text, key))
    return text


def regenerate_initramfs(target_root: str, kernel: str) -> Path:
    logger.info("Generating initramfs for all installed kernels (mkinitcpio -P)...")
    try:
        chroot_cmd(target_root, ["mkinitcpio", "-P"])
    except CommandError as e:
        raise FatalError("Initramfs generation failed") from e

    image = target_path(target_root, f"/boot/initramfs-{kernel}.img")
    if not image.is_file():
        boot_dir = target_path(target_root, "/boot")
        listing = sorted(p.name for p in boot_dir.iterdir()) if boot_dir.is_dir() else []
        logger.error("Boot directory contents: %s", ", ".join(listing) or "(empty)")
        raise FatalError(f"{image.name} not found after mkinitcpio")
    log_success(logger, "Initramfs for %s verified (size: %d bytes)", kernel, image.stat().st_size)
    return image


def install_grub_efi(target_root: str) -> None:
    """Install GRUB for x86_64 EFI targets; the ESP is mounted at /boot."""

    try:
        chroot_cmd(
            target_root,
            [
                "grub-install",
                "--target=x86_64-efi",
                "--efi-directory=/boot",
                f"--bootloader-id={BOOTLOADER_ID}",
                "--recheck",
            ],
        )
    except CommandError as e:
        raise FatalError("GRUB installation failed") from e
    log_success(logger, "GRUB EFI installed")


def configure_grub_defaults(target_root: str, root_uuid: str, luks_name: str) -> str:
    text = read_target_file(target_root, GRUB_DEFAULT)
    if text is None:
        raise FatalError(f"{GRUB_DEFAULT} not found in {target_root}")
    text = set_shell_var(text, "GRUB_CMDLINE_LINUX", f'"{cryptdevice_cmdline(root_uuid, luks_name)}"')
    for key, value in GRUB_SETTINGS.items():
        text = set_shell_var(text, key, value)
    write_target_file(target_root, GRUB_DEFAULT, text)
    logger.info("  GRUB_CMDLINE_LINUX=%s", get_shell_var(text, "GRUB_CMDLINE_LINUX"))
    return text


def generate_grub_config(target_root: str) -> None:
    try:
        chroot_cmd(target_root, ["grub-mkconfig", "-o", GRUB_CFG])
    except CommandError as e:
        raise FatalError("GRUB configuration generation failed") from e


def grub_config_has_unlock(target_root: str, root_uuid: str, luks_name: str) -> bool:
    """Missing grub.cfg is fatal; a grub.cfg without the directive is reported as False."""

    text = read_target_file(target_root, GRUB_CFG)
    if text is None:
        raise FatalError(f"GRUB configuration file {GRUB_CFG} not found")
    return f"cryptdevice=UUID={root_uuid}:{luks_name}" in text
