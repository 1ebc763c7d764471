"""Shared test fixtures."""
import uuid

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.pipeline.base import Connection, QualificationCriteria, ProtectedKeywords


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created, shared across sessions."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import app.models.ranking_run  # noqa: F401
    import app.models.scored_connection  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def patch_get_session(session_factory):
    """Route every get_session() in the persistence layer to the test engine.

    Each call gets a fresh session, like production, so commit and close
    behave for real.
    """
    with patch('app.services.db.get_session', side_effect=lambda: session_factory()):
        yield session_factory


@pytest.fixture(autouse=True)
def reset_config_cache():
    """Scoring and cost YAML are cached per process; start every test clean."""
    from app.pipeline import scoring, cost_config
    scoring.reset_cache()
    cost_config.reset_cache()
    yield
    scoring.reset_cache()
    cost_config.reset_cache()


@pytest.fixture(autouse=True)
def no_slack():
    """Never post to a real webhook, whatever the environment says."""
    with patch('app.services.notifications.SLACK_WEBHOOK_URL', None):
        yield


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.exists.return_value = 0
    mock.setex.return_value = True
    mock.zadd.return_value = 1
    mock.zrevrange.return_value = []
    mock.hgetall.return_value = {}
    mock.llen.return_value = 0
    with patch('app.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def redis_store(mock_redis):
    """mock_redis backed by dicts for the string and sorted-set commands jobs use."""
    values, zsets = {}, {}

    def zadd(key, mapping):
        zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def zrevrange(key, start, end):
        members = sorted(zsets.get(key, {}).items(), key=lambda item: item[1], reverse=True)
        ids = [member for member, _ in members]
        return ids[start:] if end < 0 else ids[start:end + 1]

    def delete(*keys):
        return sum(1 for key in keys if values.pop(key, None) is not None)

    mock_redis.setex.side_effect = lambda key, ttl, value: values.__setitem__(key, value)
    mock_redis.get.side_effect = values.get
    mock_redis.zadd.side_effect = zadd
    mock_redis.zrevrange.side_effect = zrevrange
    mock_redis.delete.side_effect = delete
    return values


@pytest.fixture
def app(mock_redis):
    """Flask test app."""
    from app import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_connection():
    """Factory fixture — a Connection with realistic defaults."""
    def _make(**overrides):
        defaults = dict(
            first_name='Jane',
            last_name='Doe',
            url='https://www.linkedin.com/in/janedoe',
            email='',
            company='Acme Software',
            position='VP Marketing',
            connected_on='15 Jan 2024',
        )
        defaults.update(overrides)
        return Connection(**defaults)
    return _make


@pytest.fixture
def criteria():
    return QualificationCriteria(
        target_titles=['VP Marketing', 'Head of Growth'],
        target_industries=['SaaS'],
        free_text_description='B2B software leaders in North America',
        exclude_titles=['Intern'],
        exclude_companies=['Competitor Inc'],
    )


@pytest.fixture
def no_keywords():
    """Protected keyword lists that match nothing."""
    return ProtectedKeywords(film=[], music=[])


@pytest.fixture
def create_run(session_factory):
    """Factory fixture — persists a RankingRun and returns it (detached)."""
    from app.models.ranking_run import RankingRun

    def _create(**overrides):
        defaults = dict(
            id=str(uuid.uuid4()),
            owner_id='default',
            name='Test ranking',
            status='pending',
            total_connections=0,
            criteria={'target_titles': ['VP Marketing'], 'target_industries': ['SaaS']},
            protected_keywords={'film': [], 'music': []},
        )
        defaults.update(overrides)
        run = RankingRun(**defaults)
        session = session_factory()
        try:
            session.add(run)
            session.commit()
        finally:
            session.close()
        return run
    return _create


@pytest.fixture
def add_rows(session_factory):
    """Factory fixture — bulk-adds ScoredConnection rows to a run, returns their ids."""
    from app.models.scored_connection import ScoredConnection

    def _add(run_id, specs):
        session = session_factory()
        try:
            rows = []
            for i, spec in enumerate(specs):
                values = dict(
                    run_id=run_id,
                    first_name=f'Person{i}',
                    last_name='Test',
                    company='Acme Software',
                    position='Manager',
                    title_score=20,
                    company_score=8,
                    recency_score=5,
                    deterministic_score=33,
                    total_score=33,
                    tier='borderline',
                    is_protected=False,
                    enrichment_status='pending',
                )
                values.update(spec)
                rows.append(ScoredConnection(**values))
            session.add_all(rows)
            session.commit()
            return [r.id for r in rows]
        finally:
            session.close()
    return _add


@pytest.fixture
def fetch_rows(session_factory):
    """Read back every scored row of a run, ordered by id."""
    from app.models.scored_connection import ScoredConnection

    def _fetch(run_id):
        session = session_factory()
        try:
            return (
                session.query(ScoredConnection)
                .filter(ScoredConnection.run_id == run_id)
                .order_by(ScoredConnection.id)
                .all()
            )
        finally:
            session.close()
    return _fetch


@pytest.fixture
def fetch_run(session_factory):
    from app.models.ranking_run import RankingRun

    def _fetch(run_id):
        session = session_factory()
        try:
            return session.get(RankingRun, run_id)
        finally:
            session.close()
    return _fetch
