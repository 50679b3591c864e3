import pytest

pytest_plugins = ["pytest_databases.docker.postgres", "pytest_databases.docker.mysql"]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
