"""Shared fixtures for relmap unit tests (asyncpg mocked)."""

import copy

import pytest

from relmap.schema import parse_schema
from tests.unit.relmap.fakes import SCHEMA_DATA, FakePool


@pytest.fixture
def schema_data():
    return copy.deepcopy(SCHEMA_DATA)


@pytest.fixture
def schema(schema_data):
    return parse_schema(schema_data)


@pytest.fixture
def pool():
    return FakePool()
