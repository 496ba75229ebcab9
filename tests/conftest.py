"""
Pytest configuration and fixtures for the PARSS installer tests.

FakeHost stands in for the machine: block-special paths, the mount table,
LUKS headers and the external tools the installer drives. Nothing here touches
a real device.
"""

import io
import os
import posixpath
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from parss_installer.errors import CommandError
from parss_installer.install_config import InstallConfig
from parss_installer.lib.block import partition_path
from parss_installer.lib.command import CmdResult
from parss_installer.lib.prompts import Prompter
from parss_installer.session import open_session

GIB = 1024 ** 3

RUN_CMD_MODULES = [
    "parss_installer.lib.block",
    "parss_installer.lib.disk",
    "parss_installer.lib.encryption",
    "parss_installer.lib.filesystem",
    "parss_installer.lib.chroot",
    "parss_installer.lib.net",
    "parss_installer.lib.retry",
    "parss_installer.lib.verify",
    "parss_installer.lib.health",
]

BLOCK_DEVICE_MODULES = [
    "parss_installer.lib.block",
    "parss_installer.lib.disk",
    "parss_installer.lib.encryption",
]

DEFAULT_MKINITCPIO = "MODULES=()\nBINARIES=()\nFILES=()\nHOOKS=(base udev autodetect modconf block filesystems fsck)\n"
DEFAULT_GRUB = 'GRUB_DEFAULT=0\nGRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX_DEFAULT="loglevel=3 quiet"\nGRUB_CMDLINE_LINUX=""\n#GRUB_ENABLE_CRYPTODISK=y\n'
DEFAULT_SSHD = "#Port 22\n#PermitRootLogin prohibit-password\n#PasswordAuthentication yes\n"


class FakeHost:
    """In-memory model of the live system the installer runs on."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Tuple[List[str], Optional[str]]] = []
        self.stdin_types: List[type] = []
        self.block_devices: Set[str] = set()
        self.sizes: Dict[str, int] = {}
        self.gpt: Set[str] = set()
        self.partitions: Dict[str, Dict[int, str]] = {}
        self.luks: Dict[str, bytes] = {}
        self.mappers: Dict[str, str] = {}  # name -> backing partition
        self.filesystems: Dict[str, str] = {}
        self.subvolumes: Dict[str, List[str]] = {}
        self.mounts: Dict[str, Tuple[str, str]] = {}  # target -> (source, options)
        self.mount_log: List[Tuple[str, str, str]] = []
        self.packages: List[str] = []
        self.users: Set[str] = set()
        self.keyfile_modes: List[int] = []

        # failure injection
        self.fail_times: Dict[Tuple[str, ...], int] = {}
        self.label_noop = False
        self.swap_partition_naming = False
        self.typecode_fails = False
        self.format_appends_newline = False
        self.mount_fails: Set[str] = set()
        self.fail_packages: Set[str] = set()
        self.grub_drops_cmdline = False

    # setup helpers

    def add_disk(self, path: str, size_gib: int) -> None:
        self.block_devices.add(path)
        self.sizes[path] = size_gib * GIB

    def mount_externally(self, source: str, target: str) -> None:
        self.mounts[target] = (source, "")

    def fail(self, *prefix: str, times: int = 1) -> None:
        self.fail_times[tuple(prefix)] = times

    def called(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]

    def index_of(self, *prefix: str) -> int:
        for i, c in enumerate(self.calls):
            if tuple(c[: len(prefix)]) == prefix:
                return i
        raise AssertionError(f"{prefix} was never called")

    # patched functions

    def is_block_device(self, path: str) -> bool:
        return path in self.block_devices

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        ok_codes=(0,),
        env=None,
        cwd=None,
        input_text: Optional[str] = None,
        input_bytes=None,
    ) -> CmdResult:
        argv = list(argv)
        self.calls.append(argv)
        if input_bytes is not None:
            # copy now; the caller scrubs its buffer afterwards
            self.stdin_types.append(type(input_bytes))
            input_text = bytes(input_bytes).decode()
        if input_text is not None:
            self.inputs.append((argv, input_text))

        rc, out, err = self._injected(argv) or self._dispatch(argv, input_text)
        if check and rc not in ok_codes:
            raise CommandError(argv, rc, err)
        return CmdResult(argv=argv, returncode=rc, stdout=out, stderr=err)

    def _injected(self, argv: List[str]) -> Optional[Tuple[int, str, str]]:
        for prefix, remaining in self.fail_times.items():
            if remaining > 0 and tuple(argv[: len(prefix)]) == prefix:
                self.fail_times[prefix] = remaining - 1
                return 1, "", f"{argv[0]}: injected failure"
        return None

    # dispatch

    def _dispatch(self, argv: List[str], input_text: Optional[str]) -> Tuple[int, str, str]:
        tool = argv[0]
        handler = getattr(self, "_" + re.sub(r"[^a-z0-9]", "_", tool), None)
        if handler is None:
            return 0, "", ""
        return handler(argv, input_text)

    def _lsblk(self, argv, _):
        dev = argv[-1] if argv[-1].startswith("/dev/") else None
        if "-r" in argv and dev:
            base = os.path.basename(dev)
            lines = [f"{base} disk"]
            for n in sorted(self.partitions.get(dev, {})):
                lines.append(f"{os.path.basename(self.partitions[dev][n])} part")
            for name, backing in self.mappers.items():
                if backing.startswith(dev):
                    lines.append(f"{name} crypt")
            return 0, "\n".join(lines) + "\n", ""
        if "SIZE" == argv[-2] and dev:
            if dev not in self.sizes:
                return 32, "", f"lsblk: {dev}: not a block device"
            return 0, f"{self.sizes[dev]}\n", ""
        if "NAME,SIZE,TYPE" in argv:
            lines = [f"{os.path.basename(d)} {s} disk" for d, s in sorted(self.sizes.items())]
            return 0, "\n".join(lines) + "\n", ""
        return 0, "NAME SIZE TYPE FSTYPE MOUNTPOINTS\n" + "\n".join(sorted(self.block_devices)) + "\n", ""

    def _blkid(self, argv, _):
        dev = argv[-1]
        tag = argv[argv.index("-s") + 1]
        if tag == "PTTYPE":
            return (0, "gpt\n", "") if dev in self.gpt else (2, "", "")
        if dev not in self.block_devices:
            return 2, "", ""
        prefix = "uuid" if tag == "UUID" else "partuuid"
        return 0, f"{prefix}-{os.path.basename(dev)}\n", ""

    def _findmnt(self, argv, _):
        if "-R" in argv:
            return 0, "\n".join(sorted(self.mounts)) + "\n", ""
        lines = [f"{src} {target}" for target, (src, _opts) in self.mounts.items()]
        return 0, "\n".join(lines) + ("\n" if lines else ""), ""

    def _mountpoint(self, argv, _):
        return (0, "", "") if argv[-1] in self.mounts else (32, "", "")

    def _mount(self, argv, _):
        opts = ""
        if "-o" in argv:
            opts = argv[argv.index("-o") + 1]
        source, target = argv[-2], argv[-1]
        if target in self.mount_fails or source not in self.block_devices:
            return 32, "", f"mount: {target}: special device {source} does not exist"
        m = re.search(r"subvol=([^,]+)", opts)
        if m and m.group(1) not in self.subvolumes.get(source, []):
            return 32, "", f"mount: {target}: subvolume {m.group(1)} not found"
        if not os.path.isdir(target):
            return 32, "", f"mount: {target}: mount point does not exist"
        self.mounts[target] = (source, opts)
        self.mount_log.append((source, target, opts))
        return 0, "", ""

    def _umount(self, argv, _):
        target = argv[-1]
        if "-R" in argv:
            for t in [t for t in self.mounts if t == target or t.startswith(target.rstrip("/") + "/")]:
                del self.mounts[t]
            return 0, "", ""
        if target in self.mounts:
            del self.mounts[target]
            return 0, "", ""
        return 32, "", f"umount: {target}: not mounted"

    def _wipefs(self, argv, _):
        dev = argv[-1]
        self.luks.pop(dev, None)
        self.gpt.discard(dev)
        self.filesystems.pop(dev, None)
        return 0, "", ""

    def _sgdisk(self, argv, _):
        dev = argv[-1]
        if "--zap-all" in argv:
            self.gpt.discard(dev)
            for path in self.partitions.pop(dev, {}).values():
                self.block_devices.discard(path)
            return 0, "", ""
        if "--clear" in argv:
            if not self.label_noop:
                self.gpt.add(dev)
            return 0, "", ""
        if "--print" in argv:
            rows = [f"{n} {p}" for n, p in sorted(self.partitions.get(dev, {}).items())]
            return 0, "\n".join(rows) + "\n", ""
        news = [a for a in argv if a.startswith("--new=")]
        if news:
            if dev not in self.gpt:
                return 4, "", "Problem: no partition table"
            n = int(news[0].split("=")[1].split(":")[0])
            path = partition_path(dev, n)
            if self.swap_partition_naming:
                path = f"{dev}{n}" if path.endswith(f"p{n}") else f"{dev}p{n}"
            self.partitions.setdefault(dev, {})[n] = path
            self.block_devices.add(path)
            return 0, "", ""
        if any(a.startswith("--typecode=") for a in argv):
            return (4, "", "typecode failed") if self.typecode_fails else (0, "", "")
        return 0, "", ""

    def _cryptsetup(self, argv, input_text):
        action = argv[1]
        part = argv[-1]
        if action == "isLuks":
            return (0, "", "") if part in self.luks else (1, "", "")
        if action == "luksErase":
            self.luks.pop(part, None)
            return 0, "", ""
        if action == "luksDump":
            return (0, f"LUKS header information\nVersion: 2\nLabel: LUKS_ROOT\n", "") if part in self.luks else (1, "", "not LUKS")
        if action == "luksFormat":
            keyfile = argv[argv.index("--key-file") + 1]
            self.keyfile_modes.append(os.stat(keyfile).st_mode & 0o777)
            key = Path(keyfile).read_bytes()
            self.luks[part] = key + (b"\n" if self.format_appends_newline else b"")
            return 0, "", ""
        if action == "open" and "--test-passphrase" in argv:
            if part not in self.luks:
                return 1, "", "not LUKS"
            return (0, "", "") if (input_text or "").encode() == self.luks[part] else (2, "", "No key available with this passphrase.")
        if action == "open":
            keyfile = argv[argv.index("--key-file") + 1]
            backing, name = argv[-2], argv[-1]
            key = Path(keyfile).read_bytes() + (b"\n" if self.format_appends_newline else b"")
            if self.luks.get(backing) != key:
                return 2, "", "No key available with this passphrase."
            self.mappers[name] = backing
            self.block_devices.add(f"/dev/mapper/{name}")
            return 0, "", ""
        if action == "close":
            self.mappers.pop(part, None)
            self.block_devices.discard(f"/dev/mapper/{part}")
            return 0, "", ""
        return 0, "", ""

    def _mkfs_btrfs(self, argv, _):
        dev = argv[-1]
        self.filesystems[dev] = "btrfs"
        self.subvolumes[dev] = []
        return 0, "", ""

    def _mkfs_fat(self, argv, _):
        self.filesystems[argv[-1]] = "vfat"
        return 0, "", ""

    def _btrfs(self, argv, _):
        if argv[1:3] == ["subvolume", "create"]:
            path = argv[3]
            parent, name = posixpath.split(path)
            source = self.mounts.get(parent, ("", ""))[0]
            self.subvolumes.setdefault(source, []).append(name)
            return 0, f"Create subvolume '{path}'\n", ""
        if argv[1:3] == ["subvolume", "list"]:
            source = self.mounts.get(argv[-1], ("", ""))[0]
            rows = [
                f"ID {256 + i} gen 10 top level 5 path {name}"
                for i, name in enumerate(self.subvolumes.get(source, []))
            ]
            return 0, "\n".join(rows) + "\n", ""
        return 0, "", ""

    def _pacstrap(self, argv, _):
        root = Path(argv[2])
        self.packages = list(argv[3:])
        for rel, text in (
            ("etc/mkinitcpio.conf", DEFAULT_MKINITCPIO),
            ("etc/default/grub", DEFAULT_GRUB),
            ("etc/ssh/sshd_config", DEFAULT_SSHD),
        ):
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        return 0, "", ""

    def _arch_chroot(self, argv, input_text):
        root = Path(argv[1])
        cmd = argv[2:]
        if cmd[:2] == ["pacman", "-Q"] and len(cmd) == 2:
            return 0, "".join(f"{p} 1.0-1\n" for p in self.packages), ""
        if cmd[:2] == ["pacman", "-Q"]:
            return (0, "", "") if cmd[2] in self.packages else (1, "", "")
        if cmd[:2] == ["pacman", "-S"]:
            name = cmd[-1]
            if name in self.fail_packages:
                return 1, "", f"error: target not found: {name}"
            self.packages.append(name)
            return 0, "", ""
        if cmd == ["mkinitcpio", "-P"]:
            img = root / "boot" / "initramfs-linux-zen.img"
            img.parent.mkdir(parents=True, exist_ok=True)
            img.write_bytes(b"\0" * 64)
            return 0, "", ""
        if cmd[0] == "grub-mkconfig":
            default = (root / "etc/default/grub").read_text(encoding="utf-8")
            m = re.search(r'^GRUB_CMDLINE_LINUX="(.*)"$', default, re.MULTILINE)
            cmdline = "" if self.grub_drops_cmdline or not m else m.group(1)
            cfg = root / cmd[-1].lstrip("/")
            cfg.parent.mkdir(parents=True, exist_ok=True)
            cfg.write_text(f"linux /vmlinuz-linux-zen {cmdline}\n", encoding="utf-8")
            return 0, "", ""
        if cmd[:2] == ["id", "-u"]:
            return (0, "1000\n", "") if cmd[2] in self.users else (1, "", "no such user")
        if cmd[0] == "useradd":
            self.users.add(cmd[-1])
            return 0, "", ""
        if cmd[0] == "sudo":
            return 1, "", "a password is required"
        return 0, "", ""


@pytest.fixture
def host(monkeypatch):
    """FakeHost wired into every module that runs commands or probes devices."""
    fake = FakeHost()
    for mod in RUN_CMD_MODULES:
        monkeypatch.setattr(f"{mod}.run_cmd", fake.run)
    for mod in BLOCK_DEVICE_MODULES:
        monkeypatch.setattr(f"{mod}.is_block_device", fake.is_block_device)
    monkeypatch.setattr(time, "sleep", lambda s: None)
    return fake


class Script:
    """Canned operator answers. Running out behaves like end of input."""

    def __init__(self, answers=(), secrets=()):
        self.answers = list(answers)
        self.secrets = list(secrets)
        self.prompts: List[str] = []
        self.out = io.StringIO()

    def _next(self, queue, prompt):
        self.prompts.append(prompt)
        if not queue:
            raise EOFError(prompt)
        return queue.pop(0)

    def prompter(self) -> Prompter:
        return Prompter(
            input_fn=lambda p: self._next(self.answers, p),
            secret_fn=lambda p: self._next(self.secrets, p),
            out=self.out,
        )


@pytest.fixture
def workdirs(tmp_path):
    dirs = {name: tmp_path / name for name in ("mnt", "run", "log", "state", "zoneinfo")}
    for name, d in dirs.items():
        if name != "mnt":
            d.mkdir()
    (dirs["zoneinfo"] / "UTC").write_text("TZif", encoding="utf-8")
    (dirs["zoneinfo"] / "Europe").mkdir()
    (dirs["zoneinfo"] / "Europe" / "Berlin").write_text("TZif", encoding="utf-8")
    return dirs


@pytest.fixture
def config(workdirs):
    return InstallConfig(
        raw={
            "target_device": "/dev/sda",
            "mount_root": str(workdirs["mnt"] / "root"),
            "keyfile_dir": str(workdirs["run"]),
            "log_dir": str(workdirs["log"]),
            "state_dir": str(workdirs["state"]),
            "zoneinfo_dir": str(workdirs["zoneinfo"]),
            "min_free_gib": 0,
            "retry_delay": 0,
        }
    )


@pytest.fixture
def make_session(config, workdirs):
    """Open a session; each call gets its own state file unless one is given."""

    counter = iter(range(1, 1000))

    def _make(script=None, cfg=None, state_path=None):
        script = script or Script()
        run_id = f"test-{next(counter)}"
        return open_session(
            cfg or config,
            log_path=str(workdirs["log"] / "install.log"),
            error_log_path=str(workdirs["log"] / "errors.log"),
            run_id=run_id,
            state_path=state_path,
            prompter=script.prompter(),
        )

    return _make
