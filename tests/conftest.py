import pytest

from clickorm.cache import TemplateCache
from clickorm.prepared import PreparedQueryFactory
from tests.helpers import FakeClient, make_schema


@pytest.fixture(scope="function")
def schema():
    """Fresh tables for each test (relations are installed on the table objects)."""
    return make_schema()


@pytest.fixture(scope="function")
def client():
    return FakeClient()


@pytest.fixture(scope="function")
def factory():
    return PreparedQueryFactory(TemplateCache(capacity=16))
