import pytest

from depselect import set_scheduler


@pytest.fixture(autouse=True)
def _default_scheduler():
    set_scheduler(None)
    yield
    set_scheduler(None)
