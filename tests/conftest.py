"""Shared fixtures for FaceMerge tests."""

import pytest

from facemerge.store.database import PeopleDatabase


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / 'people.db'


@pytest.fixture
def db(db_path):
    """Open a fresh database."""
    database = PeopleDatabase(db_path)
    yield database
    database.close()
