"""Alembic migration environment for the Vigil schema.

The database URL always comes from ``DATABASE_URL`` via the application
settings, never from alembic.ini.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from vigil_core.config import get_settings
from vigil_core.domain.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
database_url = get_settings().database_url

if context.is_offline_mode():
    # Emit SQL to stdout instead of connecting
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(database_url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()
