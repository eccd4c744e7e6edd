from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List


def manifests_dir() -> Path:
    # hardened_installer/lib/manifests.py -> hardened_installer/manifests
    return Path(__file__).resolve().parents[1] / "manifests"


def load_yaml_file(p: Path) -> Dict[str, Any]:
    try:
        import yaml  # type: ignore
    except ImportError as e:  # pragma: no cover
        raise RuntimeError("PyYAML required to load manifests") from e

    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a mapping/dict: {p}")
    return data


def load_manifest(name: str) -> Dict[str, Any]:
    return load_yaml_file(manifests_dir() / f"{name}.yaml")


def package_group(group: str) -> List[str]:
    """Package names of a group in packages.yaml (e.g. 'base', 'desktop_kde')."""

    groups = load_manifest("packages").get("groups") or {}
    if group not in groups:
        raise KeyError(f"Unknown package group: {group}")
    pkgs = groups[group] or []
    if not isinstance(pkgs, list):
        raise ValueError(f"Package group {group} must be a list")
    return [str(p) for p in pkgs]
