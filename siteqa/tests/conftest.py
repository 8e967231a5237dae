from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Engine and settings are built at import time, so the test environment has to
# be in place before anything from siteqa is imported.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"siteqa-test-{uuid4().hex}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STORAGE_PROVIDER", "memory")
os.environ.setdefault("SITE_METADATA_PROVIDER", "fake")
os.environ.setdefault("MAIL_PROVIDER", "fake")
os.environ.setdefault("LAST_ACTIVE_TOUCH_ENABLED", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_siteqa")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_siteqa")
os.environ.setdefault("STRIPE_PRICE_STARTER_MONTHLY", "price_starter_monthly")
os.environ.setdefault("STRIPE_PRICE_STARTER_YEARLY", "price_starter_yearly")
os.environ.setdefault("STRIPE_PRICE_TEAM_MONTHLY", "price_team_monthly")
os.environ.setdefault("STRIPE_PRICE_TEAM_YEARLY", "price_team_yearly")
os.environ.setdefault("STRIPE_PRICE_AGENCY_MONTHLY", "price_agency_monthly")
os.environ.setdefault("STRIPE_PRICE_AGENCY_YEARLY", "price_agency_yearly")

import pytest  # noqa: E402

from siteqa.core.config import get_settings  # noqa: E402
from siteqa.domain.models import Base  # noqa: E402
from siteqa.persistence.db import engine  # noqa: E402
from siteqa.providers.mail.factory import reset_fake_mailer  # noqa: E402
from siteqa.providers.storage.factory import reset_memory_storage  # noqa: E402
from siteqa.services.presence import drain_background_tasks  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables and empty in-memory providers.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_background_tasks()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
    reset_memory_storage()
    reset_fake_mailer()
    get_settings.cache_clear()


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)
