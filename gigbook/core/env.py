from __future__ import annotations

import os
from pathlib import Path


def load_env(path: Path | None = None) -> None:
    """
    Populate os.environ from dotenv files.

    `.env` is read first and never overrides anything already set. When no
    explicit path is given, `.env.local` next to it is read afterwards and may
    override `.env` values, but never variables exported by the shell.
    """
    shell_keys = frozenset(os.environ)

    env_path = path or _default_env_path()
    if env_path.exists():
        _apply(_parse(env_path), override=False, protected=shell_keys)

    if path is None:
        local_path = env_path.with_name(".env.local")
        if local_path.exists():
            _apply(_parse(local_path), override=True, protected=shell_keys)


def _parse(env_path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            values[key] = _strip_quotes(value.strip())
    return values


def _apply(values: dict[str, str], *, override: bool, protected: frozenset[str]) -> None:
    for key, value in values.items():
        if key in protected:
            continue
        if not override and key in os.environ:
            continue
        os.environ[key] = value


def _default_env_path() -> Path:
    return Path(__file__).resolve().parents[2] / ".env"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


__all__ = ["load_env"]
