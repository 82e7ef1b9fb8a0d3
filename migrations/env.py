"""
Alembic environment configuration.

Runs whenever Alembic performs a migration against the sales
ledger database. The URL comes from the application settings and
the schema from Base.metadata, which knows the ledger_events and
audit_log tables once sales_ledger.models is imported.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from sales_ledger.config import get_settings
from sales_ledger.logging_config import configure_logging
from sales_ledger.models import Base

config = context.config
settings = get_settings()

# alembic.ini may carry its own logging setup; otherwise use ours
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
else:
    configure_logging(settings.LOG_LEVEL)

target_metadata = Base.metadata

config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)


def run_migrations_offline() -> None:
    """Emit the migration as SQL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=settings.DATABASE_URL.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Connect to the database and apply migrations."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # SQLite cannot ALTER most columns in place.
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
