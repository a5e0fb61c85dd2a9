"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file, so tests never share state.
"""
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.dependencies import Services, build_services
from api.main import create_app
from config import Settings
from core.security import hash_password
from core.verification import AlwaysApproveVerifier
from database import Database, Order, Product

ADMIN_PASSWORD = "s3cret-kuku"
WEBHOOK_SECRET = "whsec_test"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests that go through the HTTP API")
    config.addinivalue_line("markers", "race: concurrency tests")


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        app_name="kuku-yetu-test",
        app_env="test",
        log_level="DEBUG",
        admin_password_hash=hash_password(ADMIN_PASSWORD, method="pbkdf2:sha256:1000"),
        admin_token_secret="test-token-secret",
        webhook_secrets=f"lipiana:{WEBHOOK_SECRET}",
        seed_sample_products=False,
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """Create test database with all tables."""
    db = Database.from_settings(test_settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def services(database: Database, test_settings: Settings) -> Services:
    return build_services(database, test_settings, verifier=AlwaysApproveVerifier())


@pytest_asyncio.fixture
async def client(
    database: Database, test_settings: Settings
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app = create_app(settings=test_settings, database=database, verifier=AlwaysApproveVerifier())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_headers(client: AsyncClient) -> dict[str, str]:
    """Log in as the administrator and return the Authorization header."""
    response = await client.post(
        "/api/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def make_product(services: Services) -> Callable[..., Awaitable[Product]]:
    """Factory for catalog products."""

    async def _make(**overrides: Any) -> Product:
        fields = {
            "title": "Fresh Broiler Chicken",
            "description": "Freshly processed broiler chicken",
            "category": "broiler",
            "price": Decimal("1200"),
            "quantity": 50,
        }
        fields.update(overrides)
        return await services.catalog.create_product(**fields)

    return _make


@pytest.fixture
def make_order(services: Services) -> Callable[..., Awaitable[Order]]:
    """Factory for orders of one product line, with the default delivery fee."""

    async def _make(product: Product, quantity: int = 1, **overrides: Any) -> Order:
        fields = {
            "customer_name": "Wanjiku Kamau",
            "email": "wanjiku@example.com",
            "phone": "+254712345678",
            "location": "Kilimani, Nairobi",
            "items": [{"product_id": product.id, "quantity": quantity}],
            "total": product.price * quantity + Decimal("200"),
        }
        fields.update(overrides)
        return await services.orders.create_order(**fields)

    return _make
