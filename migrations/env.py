# migrations/env.py
import logging
from logging.config import fileConfig

from flask import current_app

from alembic import context

# --- Importar el módulo de modelos ---
# Registra en la db global las tablas del portal (usuarios, viviendas, pagos, ...)
from condoportal import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

logger.info(f"Migraciones de CondoPortal sobre la aplicación: {current_app.name}")


def get_engine():
    # Flask-SQLAlchemy>=3 expone el motor directamente
    return current_app.extensions['migrate'].db.engine


def get_engine_url():
    try:
        return get_engine().url.render_as_string(hide_password=False).replace('%', '%%')
    except AttributeError:
        return str(get_engine().url).replace('%', '%%')


config.set_main_option('sqlalchemy.url', get_engine_url())
target_db = current_app.extensions['migrate'].db
target_metadata = target_db.metadata

tablas = list(target_metadata.tables.keys())
logger.info(f"Tablas detectadas para Alembic: {tablas}")
if not tablas:
    logger.warning("¡La metadata pasada a Alembic está vacía! Revisa la importación de condoportal.models")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    def process_revision_directives(context, revision, directives):
        if getattr(config.cmd_opts, 'autogenerate', False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info('Sin cambios detectados en los modelos.')

    conf_args = dict(getattr(current_app.extensions['migrate'], 'configure_args', None) or {})
    conf_args.setdefault("process_revision_directives", process_revision_directives)
    # SQLite necesita batch mode para alterar columnas (p. ej. usuarios.estado)
    conf_args.setdefault("render_as_batch", get_engine().dialect.name == 'sqlite')

    with get_engine().connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, **conf_args)
        with context.begin_transaction():
            context.run_migrations()
    logger.info("Migraciones ejecutadas y transacción completada.")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
