import pytest

from telecache.cache.engine import CacheEngine
from telecache.cache.memo import Memoizer
from tests.factories import FakeClock


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer credentials and overrides out of every test."""
    for name in ("GEMINI_API_KEY", "MCP_AUTH_TOKEN", "MCP_TRANSPORT", "LOG_LEVEL", "DATA_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> CacheEngine:
    """Small engine on a fake clock with the sweeper disabled."""
    return CacheEngine(max_size=3, sweep_interval_seconds=0, name="test", clock=clock)


@pytest.fixture
def memoizer(clock: FakeClock) -> Memoizer:
    return Memoizer(CacheEngine(max_size=100, sweep_interval_seconds=0, name="memo", clock=clock))
