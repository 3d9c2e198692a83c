import pytest

from tests.client_helpers import FakeBackend, reply


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def refreshing_backend(backend: FakeBackend) -> FakeBackend:
    backend.on(
        "POST",
        "/auth/refresh",
        reply(200, json_body={"accessToken": "access-2", "tokenType": "Bearer"}),
    )
    return backend
