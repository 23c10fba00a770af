from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml


DEFAULT_CONFIG_FILE_NAME = "config.yaml"


@dataclass(slots=True)
class QuotaConfig:
    default_signup_credits: int = 10
    daily_reward_credits: int = 5
    # compare-and-set 충돌 시 재시도 횟수
    max_write_attempts: int = 5


@dataclass(slots=True)
class AppConfig:
    """quota-service 전체 설정 루트."""

    quota: QuotaConfig


def _find_config_path() -> Path:
    """현재 작업 디렉토리 기준으로 상위로 올라가며 config.yaml 을 찾는다."""

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate

    raise RuntimeError(
        f"{DEFAULT_CONFIG_FILE_NAME} not found. Place config.yaml in project root.",
    )


def _read_non_negative_int(section: dict, key: str, default: int, path: Path) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid quota.{key} in {path}: {raw!r}") from exc
    if value < 0:
        raise RuntimeError(f"quota.{key} must not be negative in {path}: {value}")
    return value


def load_quota_config(path: Path | None = None) -> QuotaConfig:
    path = path or _find_config_path()
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    section = data.get("quota") or {}
    defaults = QuotaConfig()
    max_attempts = _read_non_negative_int(
        section, "max_write_attempts", defaults.max_write_attempts, path
    )
    return QuotaConfig(
        default_signup_credits=_read_non_negative_int(
            section, "default_signup_credits", defaults.default_signup_credits, path
        ),
        daily_reward_credits=_read_non_negative_int(
            section, "daily_reward_credits", defaults.daily_reward_credits, path
        ),
        max_write_attempts=max(1, max_attempts),
    )


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """quota-service 설정을 로드하여 AppConfig 로 반환한다 (프로세스당 1회)."""

    return AppConfig(quota=load_quota_config())
