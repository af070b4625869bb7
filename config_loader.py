from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

try:
    import tomllib  # py>=3.11
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<3.11


def _project_root() -> Path:
    """
    Walk upwards from this file until a config.toml is found.

    Returns:
        The root directory of the project.
    """
    start = Path(__file__).resolve().parent
    for p in [start, *start.parents]:
        if (p / "config.toml").is_file():
            return p
    return start


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge two dictionaries, with override taking precedence.
    """
    out = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


@lru_cache(maxsize=8)
def load(dataset: str | None = None, section: str = "fit", path: str | None = None) -> dict[str, Any]:
    """
    Load the settings of one section, with a dataset block merged on top.

    The layout is

        [paths]
        [fit]                 # defaults
        [fit.datasets.<name>] # per-dataset overrides

    Args:
        dataset: Dataset name under `[<section>.datasets]`; None for section defaults only.
        section: Top-level section.
        path: Explicit config.toml; defaults to the one at the project root.

    Returns:
        dict[str, Any]: Merged settings, plus `_paths` and `_root`.

    Raises:
        FileNotFoundError: no config file.
        KeyError: unknown dataset.
    """
    cfg_path = Path(path) if path is not None else _project_root() / "config.toml"
    with cfg_path.open("rb") as f:
        raw = tomllib.load(f)

    base = dict(raw.get(section, {}) or {})
    datasets = base.pop("datasets", {}) or {}
    if dataset is not None:
        if dataset not in datasets:
            raise KeyError(f"Dataset '{dataset}' not found in [{section}.datasets] of {cfg_path}. "
                           f"Available: {', '.join(sorted(datasets)) or 'none'}")
        base = _deep_merge(base, datasets[dataset])

    base["_paths"] = raw.get("paths", {}) or {}
    base["_root"] = str(cfg_path.resolve().parent)
    return base


def datasets(section: str = "fit", path: str | None = None) -> list[str]:
    """
    Names of the datasets defined in a section.
    """
    cfg_path = Path(path) if path is not None else _project_root() / "config.toml"
    with cfg_path.open("rb") as f:
        raw = tomllib.load(f)
    return sorted((raw.get(section, {}) or {}).get("datasets", {}) or {})
