"""Unit tests for tiering, the delay curve and the two limiters."""

from unittest.mock import AsyncMock, Mock

import pytest

from freereads.adapters.store import InMemoryKeyValueStore, StoreUnavailableError
from freereads.core.config import RateLimitSettings, SpeedLimitSettings
from freereads.core.errors import AppError, ErrorKind
from freereads.services.blacklist_service import BlacklistService
from freereads.services.traffic_control import (
    Tier,
    TrafficController,
    compute_delay_ms,
    normalize_ip,
)

CLIENT_IP = "203.0.113.7"


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def controller(ledger: BlacklistService, clock: Mock, sleep: AsyncMock) -> TrafficController:
    return TrafficController(
        RateLimitSettings(strict=10, default=100, authenticated=150),
        SpeedLimitSettings(),
        ledger,
        sleep=sleep,
        clock=clock,
    )


class TestDelayCurve:
    @pytest.mark.parametrize(
        ("usage", "expected"),
        [
            (0, 0),
            (59.9, 0),
            (60, 100),
            (70, 275),
            (80, 450),
            (99, 782),
            (100, 800),
            (180, 800),
        ],
    )
    def test_default_curve(self, usage: float, expected: int) -> None:
        assert compute_delay_ms(usage) == expected

    def test_custom_bounds(self) -> None:
        assert compute_delay_ms(50, delay_after_percent=50, min_delay_ms=0, max_delay_ms=1000) == 0
        assert compute_delay_ms(75, delay_after_percent=50, min_delay_ms=0, max_delay_ms=1000) == 500


class TestClassification:
    def test_tiers(self, controller: TrafficController) -> None:
        assert controller.tier_for("/api/v1/auth/login", None) is Tier.STRICT
        assert controller.tier_for("/API/V1/AUTH", None) is Tier.STRICT
        assert controller.tier_for("/api/v1/books", None) is Tier.DEFAULT
        assert controller.tier_for("/api/v1/authors", None) is Tier.DEFAULT
        assert controller.tier_for("/api/v1/auth/login", "user-1") is Tier.AUTHENTICATED
        assert controller.limit_for(Tier.STRICT) == 10
        assert controller.limit_for(Tier.DEFAULT) == 100
        assert controller.limit_for(Tier.AUTHENTICATED) == 150

    def test_identity_key_prefers_user(self, controller: TrafficController) -> None:
        assert controller.identity_key(CLIENT_IP, "user-1") == "user:user-1"
        assert controller.identity_key(CLIENT_IP, None) == f"ip:{CLIENT_IP}"
        assert controller.identity_key("::ffff:203.0.113.7", None) == f"ip:{CLIENT_IP}"

    @pytest.mark.parametrize(
        ("ip", "trusted"),
        [
            ("127.0.0.1", True),
            ("::1", True),
            ("::ffff:127.0.0.1", True),
            (CLIENT_IP, False),
            ("localhost", False),
            ("", False),
            (None, False),
        ],
    )
    def test_trusted_ips(self, controller: TrafficController, ip, trusted: bool) -> None:
        assert controller.is_trusted(ip) is trusted

    def test_normalize_ip(self) -> None:
        assert normalize_ip(" ::FFFF:10.0.0.1 ") == "10.0.0.1"
        assert normalize_ip("2001:DB8::1") == "2001:db8::1"
        assert normalize_ip("999.1.1.1") is None


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_request_after_budget_is_rejected_and_ip_blacklisted(
        self, controller: TrafficController, ledger: BlacklistService
    ) -> None:
        for _ in range(10):
            result = await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)
            assert result.allowed is True

        with pytest.raises(AppError) as exc_info:
            await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)

        error = exc_info.value
        assert error.kind is ErrorKind.RATE_LIMITED
        assert error.status_code == 429
        assert error.details["limit"] == 10
        assert error.details["retry_after"] == 900
        assert (await ledger.is_ip_blacklisted(CLIENT_IP)).blocked is True

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self, controller: TrafficController) -> None:
        for _ in range(10):
            await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)

        other = await controller.limit("198.51.100.1", "/api/v1/auth/login", None)
        as_user = await controller.limit(CLIENT_IP, "/api/v1/auth/login", "user-1")

        assert other.allowed is True
        assert as_user.allowed is True
        assert as_user.limit == 150

    @pytest.mark.asyncio
    async def test_window_expiry_resets_budget(self, controller: TrafficController, clock: Mock) -> None:
        for _ in range(10):
            await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)

        clock.return_value += 900

        assert (await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)).hits == 1

    @pytest.mark.asyncio
    async def test_trusted_ip_bypasses(self, controller: TrafficController) -> None:
        for _ in range(20):
            assert await controller.limit("127.0.0.1", "/api/v1/auth/login", None) is None

    @pytest.mark.asyncio
    async def test_disabled_limiter_does_nothing(self, ledger: BlacklistService) -> None:
        controller = TrafficController(
            RateLimitSettings(enabled=False), SpeedLimitSettings(enabled=False), ledger
        )

        assert await controller.limit(CLIENT_IP, "/x", None) is None
        assert await controller.slow_down(CLIENT_IP, "/x", None) is None


class TestSpeedLimiter:
    @pytest.mark.asyncio
    async def test_delay_grows_with_usage(self, controller: TrafficController, sleep: AsyncMock) -> None:
        delays = []
        for _ in range(10):
            decision = await controller.slow_down(CLIENT_IP, "/api/v1/auth/login", None)
            delays.append(decision.delay_ms)

        assert delays[:5] == [0, 0, 0, 0, 0]
        assert delays[5] == 100
        assert delays[-1] == 800
        assert delays == sorted(delays)
        sleep.assert_awaited_with(0.8)

    @pytest.mark.asyncio
    async def test_heavy_usage_is_reported_to_ledger(self, clock: Mock, sleep: AsyncMock) -> None:
        ledger = AsyncMock()
        controller = TrafficController(
            RateLimitSettings(strict=10), SpeedLimitSettings(), ledger, sleep=sleep, clock=clock
        )

        for _ in range(7):
            await controller.slow_down(CLIENT_IP, "/api/v1/auth/login", None)
        ledger.record_approaching_limit.assert_not_awaited()

        await controller.slow_down(CLIENT_IP, "/api/v1/auth/login", None)
        ledger.record_approaching_limit.assert_awaited_once_with(CLIENT_IP)

    @pytest.mark.asyncio
    async def test_speed_and_rate_windows_count_independently(
        self, controller: TrafficController
    ) -> None:
        for _ in range(10):
            await controller.slow_down(CLIENT_IP, "/api/v1/auth/login", None)

        result = await controller.limit(CLIENT_IP, "/api/v1/auth/login", None)

        assert result.hits == 1


class TestStoreSelection:
    @pytest.mark.asyncio
    async def test_adopts_working_store(self, controller: TrafficController, clock: Mock) -> None:
        shared = InMemoryKeyValueStore(clock=clock)
        shared.name = "redis"

        assert await controller.select_store(shared) == "redis"
        assert controller.backend == "redis"

        await controller.limit(CLIENT_IP, "/api/v1/books", None)
        assert await shared.get(f"rate-control:ip:{CLIENT_IP}") == "1"
        assert await shared.get("rate-control:probe") is None

    @pytest.mark.asyncio
    async def test_keeps_local_store_when_probe_fails(self, controller: TrafficController) -> None:
        broken = AsyncMock()
        broken.name = "redis"
        broken.is_ready = Mock(return_value=True)
        broken.incr.side_effect = StoreUnavailableError("down")

        assert await controller.select_store(broken) == "memory"
        assert controller.backend == "memory"

    @pytest.mark.asyncio
    async def test_skips_unready_store(self, controller: TrafficController) -> None:
        unready = AsyncMock()
        unready.is_ready = Mock(return_value=False)

        assert await controller.select_store(unready) == "memory"
        unready.incr.assert_not_awaited()
