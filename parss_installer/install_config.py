from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ValidationError
from .lib.manifests import load_yaml

DEFAULT_BASE_PACKAGES = [
    "base", "linux-zen", "linux-zen-headers", "linux-lts", "linux-lts-headers",
    "linux-firmware", "mkinitcpio",
    "grub", "efibootmgr",
    "btrfs-progs", "cryptsetup",
    "networkmanager", "wpa_supplicant", "wireless-regdb", "iw", "dhcpcd",
    "vim", "nano", "git", "curl", "wget", "sudo",
    "zsh", "zsh-completions", "openssh", "base-devel",
]

NVIDIA_PACKAGES = ["nvidia", "nvidia-utils"]


@dataclass(frozen=True)
class InstallConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _get(self, key: str, default: Any, kind: type) -> Any:
        value = self.raw.get(key, default)
        if value is None:
            return default
        if kind is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            raise ValidationError(f"config.{key} must be {kind.__name__}, got {value!r}")
        return value

    @property
    def target_device(self) -> Optional[str]:
        return self.raw.get("target_device") or None

    @property
    def mount_root(self) -> str:
        return self._get("mount_root", "/mnt/root", str)

    @property
    def luks_name(self) -> str:
        return self._get("luks_name", "cryptroot", str)

    @property
    def hostname(self) -> str:
        return self._get("hostname", "archlinux", str)

    @property
    def username(self) -> str:
        return self._get("username", "archuser", str)

    @property
    def add_log_subvolume(self) -> bool:
        return self._get("add_log_subvolume", True, bool)

    @property
    def enable_nvidia(self) -> bool:
        return self._get("enable_nvidia", False, bool)

    @property
    def snapshot_retention(self) -> int:
        return self._get("snapshot_retention", 12, int)

    @property
    def timezone(self) -> str:
        return self._get("timezone", "UTC", str)

    @property
    def kernel(self) -> str:
        return self._get("kernel", "linux-zen", str)

    @property
    def base_packages(self) -> List[str]:
        pkgs = self._get("base_packages", DEFAULT_BASE_PACKAGES, list)
        return [str(p) for p in pkgs]

    @property
    def software_manifest(self) -> Optional[str]:
        return self.raw.get("software_manifest") or None

    @property
    def min_disk_gib(self) -> int:
        return self._get("min_disk_gib", 51, int)

    @property
    def min_free_gib(self) -> int:
        return self._get("min_free_gib", 30, int)

    @property
    def boot_size_mib(self) -> int:
        return self._get("boot_size_mib", 1024, int)

    @property
    def retry_attempts(self) -> int:
        attempts = self._get("retry_attempts", 3, int)
        if attempts < 1:
            raise ValidationError(f"config.retry_attempts must be at least 1, got {attempts}")
        return attempts

    @property
    def retry_delay(self) -> float:
        return self._get("retry_delay", 5.0, float)

    @property
    def settle_timeout(self) -> int:
        return self._get("settle_timeout", 10, int)

    @property
    def keyfile_dir(self) -> str:
        return self._get("keyfile_dir", "/run", str)

    @property
    def log_dir(self) -> str:
        return self._get("log_dir", "/var/log", str)

    @property
    def state_dir(self) -> str:
        return self._get("state_dir", "/var/lib/parss-installer", str)

    @property
    def skip_unmount(self) -> bool:
        return self._get("skip_unmount", False, bool)

    @property
    def zoneinfo_dir(self) -> str:
        return self._get("zoneinfo_dir", "/usr/share/zoneinfo", str)

    def validate(self) -> "InstallConfig":
        """Read every setting once so a bad value fails at load time."""

        for name, attr in vars(type(self)).items():
            if isinstance(attr, property):
                getattr(self, name)
        return self

    def with_overrides(self, **overrides: Any) -> "InstallConfig":
        merged = dict(self.raw)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return InstallConfig(raw=merged)


def load_install_config(path: Optional[str]) -> InstallConfig:
    if not path:
        return InstallConfig()
    if not path.lower().endswith((".yaml", ".yml")):
        raise ValidationError("installer config must be YAML")
    return InstallConfig(raw=load_yaml(path)).validate()
