"""Global test fixtures and utilities for learnstream tests"""
import pytest
import httpx
from datetime import datetime, timedelta, timezone

from src.gamification.anti_cheat import to_epoch_ms
from src.gamification.memory_store import InMemoryActionStore
from src.models.action import ActionRecord, SOURCE_ACTIVITY
from src.services.progress_service import ProgressService


# ============================================================================
# Clock Fixtures
# ============================================================================

# Wednesday noon: no weekend, early bird or night owl effects
FIXED_NOW = datetime(2024, 3, 13, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock passed wherever the code asks for `clock`"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def ms(self, offset_ms: int = 0) -> int:
        """Epoch milliseconds of the current time plus an offset"""
        return to_epoch_ms(self.now) + offset_ms


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW"""
    return FakeClock()


# ============================================================================
# Store & Service Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "learner-1"


@pytest.fixture
def store(clock):
    """Empty in-memory store sharing the test clock"""
    return InMemoryActionStore(lock_timeout_seconds=1.0, clock=clock)


@pytest.fixture
def seeded_store(store, test_user_id):
    """Store with one brand-new user"""
    store.create_user(test_user_id)
    return store


@pytest.fixture
def service(seeded_store, clock):
    """ProgressService over the seeded store with default policies"""
    return ProgressService(seeded_store, clock=clock)


def make_record(
    user_id="learner-1",
    action_type="video_like",
    created_at=FIXED_NOW,
    source=SOURCE_ACTIVITY,
    **fields
) -> ActionRecord:
    """Build an action-log record whose timestamp matches created_at"""
    fields.setdefault("timestamp", to_epoch_ms(created_at))
    return ActionRecord(
        user_id=user_id,
        action_type=action_type,
        created_at=created_at,
        source=source,
        **fields
    )


@pytest.fixture
def record_factory():
    return make_record


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
async def api_client(seeded_store, clock):
    """HTTP client bound to an app that uses the seeded in-memory store"""
    from src.api.middleware import limiter
    from src.api.server import create_api_application
    from src.services import reset_container

    limiter.reset()
    app = create_api_application(store=seeded_store, clock=clock)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    reset_container()
