import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Test environment: no real network lookups, quiet logs, deterministic fallback
test_env_vars = {
    'DATABASE_URL': 'sqlite:///./data/test_malwareguard.db',
    'LOG_LEVEL': 'ERROR',
    'ENRICHMENT_TIMEOUT': '2.0',
    'FALLBACK_SEED': '1337',
}

for key, value in test_env_vars.items():
    os.environ.setdefault(key, value)

from malwareguard.core.threat_intel import BreachLookup, DnsLookup  # noqa: E402
from malwareguard.schemas import BreachRecord  # noqa: E402

FIXED_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeIntel:
    """
    Stand-in for ThreatIntelligence with canned answers.
    Domains listed in `healthy` publish MX, SPF and DMARC records.
    """

    def __init__(self, healthy=('gmail.com', 'example.com'), breached=(), spam=(),
                 dns_down=False, breach_error=None):
        self.healthy = set(healthy)
        self.breached = set(breached)
        self.spam = set(spam)
        self.dns_down = dns_down
        self.breach_error = breach_error
        self.calls = []

    def resolve(self, domain, record_type):
        self.calls.append((domain, record_type))
        if self.dns_down:
            return DnsLookup(ok=False)
        base = domain[len('_dmarc.'):] if domain.startswith('_dmarc.') else domain
        if base not in self.healthy:
            return DnsLookup()
        if record_type == 'MX':
            return DnsLookup(records=[f"10 mx.{base}."])
        if domain.startswith('_dmarc.'):
            return DnsLookup(records=["v=DMARC1; p=reject"])
        return DnsLookup(records=["v=spf1 include:_spf.example.net ~all"])

    def check_dnsbl(self, domain):
        self.calls.append((domain, 'DNSBL'))
        if domain in self.spam:
            return DnsLookup(records=["127.0.1.2"])
        return DnsLookup()

    def lookup_breaches(self, email):
        self.calls.append((email, 'BREACH'))
        if self.breach_error:
            raise self.breach_error
        if email in self.breached:
            return BreachLookup(breaches=[
                BreachRecord(name="Adobe", date="2013-10-04"),
                BreachRecord(name="LinkedIn", date="2016-05-18"),
            ])
        return BreachLookup()

    def close(self):
        pass


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def fake_intel():
    return FakeIntel()


@pytest.fixture
def db_session():
    """Isolated in-memory database with the settings tables created"""
    from malwareguard.database import Base, init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
