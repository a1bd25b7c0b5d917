"""
Test helper functions and factory methods for the StayChill client data layer.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import jwt

from shared.config import ClientConfig


class FakeClock:
    """Controllable wall clock; callable like ``time.time``."""

    __test__ = False

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0

    @property
    def now_ms(self) -> int:
        return round(self.now * 1000)


@dataclass
class TestUser:
    """Test user data."""

    __test__ = False

    id: int
    email: str
    name: str
    role: str = "guest"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name, "role": self.role}


class TestDataFactory:
    """Factory for creating test data."""

    __test__ = False

    @staticmethod
    def create_test_users() -> List[TestUser]:
        return [
            TestUser(id=1, email="maya@staychill.test", name="Maya Torres"),
            TestUser(id=2, email="owen@staychill.test", name="Owen Park", role="host"),
            TestUser(id=3, email="admin@staychill.test", name="Admin", role="admin"),
        ]

    @staticmethod
    def create_test_properties() -> List[Dict[str, Any]]:
        return [
            {
                "id": 12,
                "title": "Cliffside Villa",
                "location": "Santorini",
                "pricePerNight": 420,
                "featured": True,
            },
            {
                "id": 13,
                "title": "Lakeside Cabin",
                "location": "Lake Tahoe",
                "pricePerNight": 180,
                "featured": True,
            },
            {
                "id": 14,
                "title": "Downtown Loft",
                "location": "Lisbon",
                "pricePerNight": 140,
                "featured": False,
            },
        ]

    @staticmethod
    def create_test_restaurants() -> List[Dict[str, Any]]:
        return [
            {"id": 7, "name": "Blue Harbour", "cuisine": "seafood", "featured": True},
            {"id": 8, "name": "Olive & Thyme", "cuisine": "mediterranean", "featured": True},
        ]

    @staticmethod
    def create_test_booking(property_id: int = 12, user_id: int = 1) -> Dict[str, Any]:
        return {
            "propertyId": property_id,
            "userId": user_id,
            "checkIn": "2026-07-01",
            "checkOut": "2026-07-05",
            "guests": 2,
        }


class MockTokenGenerator:
    """Generate mock JWT tokens for testing."""

    __test__ = False

    def __init__(self, issuer: str = "https://identity.staychill.test", secret: str = "mock-secret"):
        self.issuer = issuer
        self.secret = secret

    def generate_id_token(self, user: TestUser, issued_at: float, expires_in: int = 3600) -> str:
        payload = {
            "iss": self.issuer,
            "sub": str(user.id),
            "email": user.email,
            "iat": int(issued_at),
            "exp": int(issued_at + expires_in),
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")


ResponseSpec = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


@dataclass
class MockApi:
    """Scripted REST API for ``httpx.MockTransport``.

    Routes map ``"METHOD /path"`` to a list of responses consumed in order; the
    last one repeats. Exceptions in the list are raised from the transport.
    """

    routes: Dict[str, List[ResponseSpec]] = field(default_factory=dict)
    requests: List[httpx.Request] = field(default_factory=list)

    def add(self, method: str, path: str, *responses: ResponseSpec) -> "MockApi":
        self.routes[f"{method.upper()} {path}"] = list(responses)
        return self

    def json(self, method: str, path: str, data: Any, status_code: int = 200) -> "MockApi":
        return self.add(method, path, httpx.Response(status_code, json=data))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responses = self.routes.get(f"{request.method} {request.url.path}")
        if not responses:
            return httpx.Response(404, json={"message": "Not found"})

        scripted = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted) and not isinstance(scripted, httpx.Response):
            return scripted(request)
        # fresh copy; a response object is bound to the request that read it
        return httpx.Response(scripted.status_code, headers=scripted.headers, content=scripted.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def count(self, method: str, path: str) -> int:
        return len(self.calls(method, path))

    @staticmethod
    def body(request: httpx.Request) -> Optional[Any]:
        return json.loads(request.content) if request.content else None


class TestEnvironment:
    """Test environment configuration."""

    __test__ = False

    @staticmethod
    def get_mock_config() -> Dict[str, Any]:
        return {
            "STAYCHILL_ENV": "test",
            "STAYCHILL_LOG_LEVEL": "debug",
            "STAYCHILL_API_BASE_URL": "http://api.staychill.test",
            "STAYCHILL_STORAGE_BACKEND": "memory",
            "STAYCHILL_REDIS_URL": "redis://localhost:6379/0",
        }

    @staticmethod
    def make_config(**overrides: Any) -> ClientConfig:
        values = {
            "env": "test",
            "api_base_url": "http://api.staychill.test",
            "storage_backend": "memory",
        }
        values.update(overrides)
        return ClientConfig(**values)


# Global instances for easy access
test_data_factory = TestDataFactory()
mock_token_generator = MockTokenGenerator()
test_environment = TestEnvironment()
