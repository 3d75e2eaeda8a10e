import docker  # type: ignore
import pytest


def _docker_available() -> bool:
    try:
        return docker.from_env().ping()
    except Exception:
        return False


def pytest_collection_modifyitems(config, items):
    if _docker_available():
        return
    skip_docker = pytest.mark.skip(reason="docker daemon not available")
    for item in items:
        if "docker" in item.keywords:
            item.add_marker(skip_docker)
