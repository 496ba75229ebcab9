from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0

    def render(self) -> str:
        return f"{self.spec}\t{self.mountpoint}\t{self.fstype}\t{self.options}\t{self.dump}\t{self.passno}"


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    lines = ["# /etc/fstab: static file system information.", "# <file system>\t<dir>\t<type>\t<options>\t<dump>\t<pass>"]
    lines.extend(e.render() for e in entries)
    return "\n".join(lines) + "\n"


def parse_fstab(text: str) -> List[FstabEntry]:
    entries: List[FstabEntry] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) < 4:
            continue
        dump = int(parts[4]) if len(parts) > 4 and parts[4].isdigit() else 0
        passno = int(parts[5]) if len(parts) > 5 and parts[5].isdigit() else 0
        entries.append(FstabEntry(parts[0], parts[1], parts[2], parts[3], dump, passno))
    return entries


@dataclass(frozen=True)
class CrypttabEntry:
    name: str
    device: str
    keyfile: str = "none"
    options: str = "luks,x-systemd.device-timeout=10"

    def render(self) -> str:
        return f"{self.name}\t{self.device}\t{self.keyfile}\t{self.options}"


def render_crypttab(entries: Iterable[CrypttabEntry]) -> str:
    lines = ["# <name>\t<device>\t<password>\t<options>"]
    lines.extend(e.render() for e in entries)
    return "\n".join(lines) + "\n"


def parse_crypttab(text: str) -> List[CrypttabEntry]:
    entries: List[CrypttabEntry] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        entries.append(
            CrypttabEntry(
                name=parts[0],
                device=parts[1],
                keyfile=parts[2] if len(parts) > 2 else "none",
                options=parts[3] if len(parts) > 3 else "",
            )
        )
    return entries
