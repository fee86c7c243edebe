"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from freereads.core.config import AuthSettings, SpeedLimitSettings

ACCESS_SECRET = "test-access-secret-0123456789abcdef"


def test_auth_settings_reject_shared_secret() -> None:
    with pytest.raises(ValidationError, match="refresh_secret must differ"):
        AuthSettings(access_secret=ACCESS_SECRET, refresh_secret=ACCESS_SECRET)


def test_auth_settings_accept_distinct_secrets() -> None:
    config = AuthSettings(
        access_secret=ACCESS_SECRET, refresh_secret="test-refresh-secret-0123456789abcdef"
    )

    assert config.algorithm == "HS256"


def test_speed_settings_reject_inverted_delay_bounds() -> None:
    with pytest.raises(ValidationError, match="min_delay_ms must not exceed max_delay_ms"):
        SpeedLimitSettings(min_delay_ms=900, max_delay_ms=800)


@pytest.mark.parametrize(("min_delay", "max_delay"), [(0, 0), (100, 800), (500, 500)])
def test_speed_settings_accept_ordered_bounds(min_delay: int, max_delay: int) -> None:
    config = SpeedLimitSettings(min_delay_ms=min_delay, max_delay_ms=max_delay)

    assert config.min_delay_ms <= config.max_delay_ms
