import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from portal.database import Base, ensure_schema  # noqa: E402
from portal.models import appointment, availability, integration_job, profile  # noqa: E402,F401
from portal.models.profile import Profile  # noqa: E402


@pytest.fixture
def db_engine():
    # One shared connection so the in-memory database survives across sessions and threads.
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    ensure_schema(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def patient(db) -> Profile:
    profile = Profile(full_name='Ana Gomez', email='ana.gomez@example.com', phone='+57 300 123 4567', role='patient')
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@pytest.fixture
def other_patient(db) -> Profile:
    profile = Profile(full_name='Luis Perez', email='luis.perez@example.com', role='patient')
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile
