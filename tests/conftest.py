import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before anything imports keyflow settings
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_INSECURE_COOKIES", "true")
os.environ.setdefault(
    "SESSION_SIGNING_KEYS",
    "test-primary-signing-key-0123456789abcdef,test-previous-signing-key-0123456789abcdef",
)
os.environ.setdefault("OAUTH_CLIENT_ID", "test-client-id")
os.environ.setdefault("OAUTH_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("FRONTEND_ORIGIN", "http://localhost:5173")
os.environ.pop("REDIS_URL", None)
os.environ.pop("DATABASE_URL", None)

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from keyflow.config import get_settings  # noqa: E402
from keyflow.service.runtime import Runtime, reset_runtime_for_tests, set_runtime  # noqa: E402

PROVIDER_PROFILE = {
    "id": 583231,
    "login": "octocat",
    "name": "The Octocat",
    "avatar_url": "https://avatars.example.com/u/583231",
    "email": "Octocat@Example.com",
}


class FakeProvider:
    """Scripted identity provider behind ``httpx.MockTransport``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: dict = {"access_token": "gho_test_token", "token_type": "bearer"}
        self.profile_status = 200
        self.profile_body: dict = dict(PROVIDER_PROFILE)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        settings = get_settings()
        if str(request.url) == settings.oauth_token_url:
            return httpx.Response(self.token_status, json=self.token_body)
        if str(request.url) == settings.oauth_userinfo_url:
            return httpx.Response(self.profile_status, json=self.profile_body)
        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def runtime(provider):
    """Runtime wired to the fake provider and installed as the singleton."""
    instance = Runtime(http_client=provider.client())
    set_runtime(instance)
    return instance


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
