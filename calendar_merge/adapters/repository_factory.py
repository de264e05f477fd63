"""Factory for creating database repository instances."""

from typing import cast

from calendar_merge.adapters.sqlite_repository import SQLiteRepository
from calendar_merge.config.logging_config import get_logger
from calendar_merge.config.settings import Settings
from calendar_merge.domain.protocols import RepositoryProtocol

logger = get_logger(__name__)


def create_repository(settings: Settings) -> RepositoryProtocol:
    """Create appropriate repository based on settings.

    Args:
        settings: Application settings

    Returns:
        Repository instance

    Raises:
        ValueError: If database_type is not supported
        RepositoryError: On connection errors
    """
    if settings.database_type == "sqlite":
        logger.info("repository_sqlite_selected", path=settings.db_path)
        return cast(RepositoryProtocol, SQLiteRepository(db_path=settings.db_path))

    raise ValueError(
        f"Unsupported database type: {settings.database_type}. Must be 'sqlite'"
    )
