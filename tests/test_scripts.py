from __future__ import annotations

import importlib.util
from types import ModuleType

import pytest
import redis

from conftest import ROOT, FakeRedis


def load_script(name: str) -> ModuleType:
    path = ROOT / "deploy" / "scripts" / f"{name}.py"
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class FlakyRedis(FakeRedis):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.pings = 0

    def ping(self) -> bool:
        self.pings += 1
        if self.pings <= self.failures:
            raise redis.ConnectionError("connection refused")
        return True


class TestWaitForRedis:
    def test_waits_until_ping_succeeds(self) -> None:
        wait_for_redis = load_script("wait_for_redis")
        client = FlakyRedis(failures=2)

        assert wait_for_redis.wait_for_redis(client, timeout=5, interval=0)
        assert client.pings == 3

    def test_gives_up_after_timeout(self) -> None:
        wait_for_redis = load_script("wait_for_redis")
        client = FlakyRedis(failures=1_000)

        assert not wait_for_redis.wait_for_redis(client, timeout=0, interval=0)
        assert client.pings == 1

    @pytest.mark.parametrize("failures, exit_code", [(0, 0), (1_000, 1)])
    def test_main_always_closes_its_client(
        self, monkeypatch: pytest.MonkeyPatch, failures: int, exit_code: int
    ) -> None:
        wait_for_redis = load_script("wait_for_redis")
        client = FlakyRedis(failures=failures)
        monkeypatch.setenv("WAIT_FOR_REDIS_TIMEOUT", "0")
        monkeypatch.setattr(wait_for_redis.redis, "from_url", lambda url: client)

        assert wait_for_redis.main() == exit_code
        assert client.closed
