"""Schema management for SQL-backed providers.

Only the production overlay stores records in PostgreSQL; with the in-memory
defaults both functions find nothing to do and return an empty list.
"""

import structlog
from protean.domain import Domain
from sqlalchemy import create_engine

logger = structlog.get_logger(__name__)

_SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in _SQL_PROVIDERS:
            yield provider


def setup_db(domain: Domain) -> list[str]:
    """Create the ledger, order, stock and payment-intent tables; returns the table names."""
    created = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])

            # Models are registered on the provider's metadata when each DAO is first built
            for registry in (domain.registry.aggregates, domain.registry.entities):
                for _, record in registry.items():
                    if record.cls.meta_.provider == provider.name:
                        domain.repository_for(record.cls)._dao  # noqa: B018

            provider._metadata.create_all(engine)
            created.extend(sorted(provider._metadata.tables))
            logger.info("Schema created", provider=provider.name, tables=len(provider._metadata.tables))
    return created


def drop_db(domain: Domain) -> list[str]:
    """Drop every table the SQL providers created; returns the table names."""
    dropped = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            dropped.extend(sorted(provider._metadata.tables))
            provider._metadata.drop_all(engine)
            logger.info("Schema dropped", provider=provider.name)
    return dropped
