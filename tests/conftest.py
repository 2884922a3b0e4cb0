"""
Pytest configuration and fixtures
"""

import pytest

from regmapper.db import create_db_engine, init_db, make_session_factory, seed_reference_data
from regmapper.mapper.keyword_mapper import map_controls
from regmapper.splitter import parse_regulation
from regmapper.tagger import tag_requirements
from tests.helpers import SAMPLE_TEXT, StubEmbedder, create_regulation


@pytest.fixture
def engine():
    """In-memory SQLite engine with the schema created"""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_db(engine):
    """Empty database session (no reference data)"""
    SessionLocal = make_session_factory(engine)
    session = SessionLocal()

    yield session

    session.close()


@pytest.fixture
def seeded_db(test_db):
    """Session with the seed tags and controls"""
    seed_reference_data(test_db)
    return test_db


@pytest.fixture
def regulation(seeded_db, tmp_path):
    """Registered regulation for the two-article sample document"""
    return create_regulation(seeded_db, tmp_path, SAMPLE_TEXT)


@pytest.fixture
def parsed_regulation(seeded_db, regulation):
    parse_regulation(seeded_db, regulation.id)
    return regulation


@pytest.fixture
def tagged_regulation(seeded_db, parsed_regulation):
    tag_requirements(seeded_db, parsed_regulation.id)
    return parsed_regulation


@pytest.fixture
def mapped_regulation(seeded_db, tagged_regulation):
    map_controls(seeded_db, tagged_regulation.id)
    return tagged_regulation


@pytest.fixture
def stub_embedder():
    return StubEmbedder()
