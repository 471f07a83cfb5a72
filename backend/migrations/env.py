"""
Alembic environment for the cutover schema.

The engine and metadata come from the running Flask app (flask db ...), so
DATABASE_URL in Config is the only place the database is configured.
Migrate() options (compare_type, render_as_batch) are applied in both modes.
"""
import logging
from logging.config import fileConfig

from flask import current_app

from alembic import context

config = context.config

fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

migrate_ext = current_app.extensions['migrate']


def get_engine():
    return migrate_ext.db.engine


def get_engine_url():
    # '%' must be escaped for the ini parser
    return get_engine().url.render_as_string(hide_password=False).replace('%', '%%')


config.set_main_option('sqlalchemy.url', get_engine_url())


def get_metadata():
    return migrate_ext.db.metadata


def skip_empty_autogenerate(context, revision, directives):
    """Do not write a revision file when autogenerate finds nothing to change."""
    if getattr(config.cmd_opts, 'autogenerate', False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info('No changes in cutover schema detected.')


def run_migrations_offline():
    """Emit SQL for the migration without connecting (flask db upgrade --sql)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=get_metadata(),
        literal_binds=True,
        **migrate_ext.configure_args
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run the migration against the app's engine."""
    conf_args = dict(migrate_ext.configure_args)
    conf_args.setdefault("process_revision_directives", skip_empty_autogenerate)

    with get_engine().connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=get_metadata(),
            **conf_args
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
