from protean.domain import Domain
from sqlalchemy import create_engine

SQL_PROVIDERS = ("sqlite", "postgresql")
PAGE_SIZE = 100


def _sql_providers(domain: Domain):
    for name, provider in domain.providers.items():
        if provider.conn_info["provider"] in SQL_PROVIDERS:
            yield name, provider


def setup_db(domain: Domain):
    """Create tables for every aggregate and entity stored on a SQL provider"""
    with domain.domain_context():
        for name, provider in _sql_providers(domain):
            records = [*domain.registry.aggregates.values(), *domain.registry.entities.values()]
            for record in records:
                if record.cls.meta_.provider == name:
                    # Touching the DAO registers the model with the provider's metadata
                    domain.repository_for(record.cls)._dao  # noqa: B018

            provider._metadata.create_all(create_engine(provider.conn_info["database_uri"]))


def drop_db(domain: Domain):
    with domain.domain_context():
        for _, provider in _sql_providers(domain):
            provider._metadata.drop_all(create_engine(provider.conn_info["database_uri"]))


def scan(dao, order_by="id", **filters) -> list:
    """Every record matching ``filters``, fetched one page at a time."""
    results = []
    offset = 0
    while True:
        page = dao.query.filter(**filters).order_by(order_by).offset(offset).limit(PAGE_SIZE).all().items
        results.extend(page)
        if len(page) < PAGE_SIZE:
            return results
        offset += PAGE_SIZE
