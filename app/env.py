"""Вибір env-файлу для chart-feed.

Порядок:
    1) `CHART_FEED_ENV_FILE` у process-ENV;
    2) рядок `CHART_FEED_ENV_FILE=...` у dispatcher-файлі `.env`;
    3) сам `.env`.

Відносні шляхи резолвляться від кореня проєкту. Решта налаштувань
(ключ API, URL-и, порти) живе у вибраному профільному файлі.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_FILE_VAR = "CHART_FEED_ENV_FILE"


@dataclass(frozen=True, slots=True)
class EnvFileSelection:
    """Результат вибору: шлях, джерело (`process_env` / `dispatcher_env` /
    `fallback`) та сире значення змінної."""

    path: Path
    source: str
    exists: bool
    ref: str | None = None


def _read_dispatch_value(project_root: Path, key: str) -> str | None:
    # Тільки пошук одного ключа: `.env` може містити що завгодно (PEM тощо).
    env_path = project_root / ".env"
    try:
        text = env_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, value = line.split("=", 1)
        if name.strip().removeprefix("export ").strip() != key:
            continue
        value = value.strip().strip('"').strip("'")
        return value or None
    return None


def _resolve(project_root: Path, ref: str) -> Path:
    candidate = Path(ref).expanduser()
    if not candidate.is_absolute():
        candidate = project_root / candidate
    return candidate


def select_env_file_with_trace(project_root: Path) -> EnvFileSelection:
    override = os.getenv(ENV_FILE_VAR)
    if override:
        path = _resolve(project_root, override)
        return EnvFileSelection(path, "process_env", path.exists(), override)

    dispatched = _read_dispatch_value(project_root, ENV_FILE_VAR)
    if dispatched:
        path = _resolve(project_root, dispatched)
        return EnvFileSelection(path, "dispatcher_env", path.exists(), dispatched)

    path = project_root / ".env"
    return EnvFileSelection(path, "fallback", path.exists())


def select_env_file(project_root: Path) -> Path:
    return select_env_file_with_trace(project_root).path


__all__ = [
    "ENV_FILE_VAR",
    "EnvFileSelection",
    "select_env_file",
    "select_env_file_with_trace",
]
