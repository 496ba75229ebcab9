from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from ..errors import ValidationError


def load_yaml(path: str) -> Dict[str, Any]:
    """Load a YAML mapping from disk."""
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("PyYAML required to load installer configuration and manifests") from e

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"{p}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"{p}: must contain a mapping")
    return data


def load_software_manifest(path: str) -> List[Dict[str, str]]:
    """Entries of a software manifest: [{name: ..., source: pacman}, ...]."""

    data = load_yaml(path)
    entries = data.get("packages") or []
    if not isinstance(entries, list):
        raise ValidationError(f"{path}: packages must be a list")

    out: List[Dict[str, str]] = []
    for item in entries:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict) or not str(item.get("name") or "").strip():
            raise ValidationError(f"{path}: every package entry needs a name, got {item!r}")
        out.append({"name": str(item["name"]).strip(), "source": str(item.get("source") or "pacman")})
    return out
