import pytest

from tests.reporting.helpers import Harness


@pytest.fixture
def harness(storage_root) -> Harness:
    return Harness(storage_root)
