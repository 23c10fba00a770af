from __future__ import annotations

from pathlib import Path

import pytest

from quota_service.app.config import load_quota_config


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    return path


def test_zero_credit_amounts_are_accepted(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        "quota:\n  default_signup_credits: 0\n  daily_reward_credits: 0\n",
    )

    config = load_quota_config(path)

    assert config.default_signup_credits == 0
    assert config.daily_reward_credits == 0
    assert config.max_write_attempts == 5


def test_max_write_attempts_is_at_least_one(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "quota:\n  max_write_attempts: 0\n")

    assert load_quota_config(path).max_write_attempts == 1


@pytest.mark.parametrize("raw", ["-1", "ten"])
def test_invalid_credit_amounts_are_rejected(tmp_path: Path, raw: str) -> None:
    path = _write_config(tmp_path, f"quota:\n  default_signup_credits: {raw}\n")

    with pytest.raises(RuntimeError):
        load_quota_config(path)
