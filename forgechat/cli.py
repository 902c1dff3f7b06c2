import click
import uvicorn
from sqlalchemy import create_engine

from forgechat.config import get_config
from forgechat.log import logger
from forgechat.orm import Base


@click.group()
def cli():
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, default=False)
def start(host: str, port: int, reload: bool):
    """Start the API server."""
    uvicorn.run("forgechat.app:app", host=host, port=port, reload=reload)


@cli.command()
def migrate():
    """Create all tables."""
    config = get_config()
    engine = create_engine(config.get_db_url(async_mode=False))
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()
    logger.info("Database migrated")


@cli.command()
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
def clear(yes: bool):
    """Delete every row from every table."""
    if not yes:
        click.confirm("This deletes all conversations and artifacts. Continue?", abort=True)

    config = get_config()
    engine = create_engine(config.get_db_url(async_mode=False))
    try:
        with engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
    finally:
        engine.dispose()
    logger.info("Database cleared")


if __name__ == "__main__":
    cli()
