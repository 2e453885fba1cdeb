"""Schema management for SQL-backed providers.

The memory provider needs no schema. When ``domain.toml`` points a provider
at PostgreSQL or SQLite, these helpers create or drop the tables for every
registered aggregate and entity.
"""

import structlog
from protean.domain import Domain
from sqlalchemy import create_engine

logger = structlog.get_logger(__name__)

_SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for name, provider in domain.providers.items():
        if provider.conn_info["provider"] in _SQL_PROVIDERS:
            yield name, provider


def _register_models(domain: Domain, provider) -> None:
    # Touching the DAO registers the element's table with the provider metadata
    registries = (
        domain.registry.aggregates,
        domain.registry.entities,
    )
    for registry in registries:
        for _, record in registry.items():
            if record.cls.meta_.provider == provider.name:
                domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> int:
    """Create tables on every SQL provider. Returns the number of providers touched."""
    touched = 0
    with domain.domain_context():
        for name, provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, provider)
            provider._metadata.create_all(engine)
            logger.info("Schema created", provider=name)
            touched += 1
    return touched


def drop_db(domain: Domain) -> int:
    """Drop tables on every SQL provider. Returns the number of providers touched."""
    touched = 0
    with domain.domain_context():
        for name, provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, provider)
            provider._metadata.drop_all(engine)
            logger.info("Schema dropped", provider=name)
            touched += 1
    return touched
