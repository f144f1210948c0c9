"""
Repository Factory
Centralizes the logic for selecting the storage backend.
"""

import logging

from flashmaster.application.config import AppConfig
from flashmaster.domain.errors import ValidationError
from flashmaster.domain.models import utcnow
from flashmaster.domain.ports import Repository
from flashmaster.infrastructure.adapters.json_store import JsonStore
from flashmaster.infrastructure.adapters.memory_repo import Clock, MemoryRepository
from flashmaster.infrastructure.adapters.sql_repo import SqlRepository, sqlite_url

logger = logging.getLogger(__name__)


async def get_repository(config: AppConfig, clock: Clock = utcnow) -> Repository:
    """
    Returns the Repository implementation selected by ``config.store``.
    """
    if config.store == "memory":
        logger.debug("Backend: memory")
        return MemoryRepository(clock=clock)

    if config.store == "json":
        logger.debug(f"Backend: json ({config.json_path})")
        return await JsonStore.open(
            config.json_path,
            backups_dir=config.backups_dir,
            max_backups=config.max_backups,
            clock=clock,
        )

    if config.store == "sqlite":
        logger.debug(f"Backend: sqlite ({config.db_path})")
        config.db_path.parent.mkdir(parents=True, exist_ok=True)
        return await SqlRepository.open(sqlite_url(config.db_path), clock=clock)

    if config.store == "postgres":
        if not config.database_url:
            raise ValidationError("store 'postgres' requires database_url")
        logger.debug("Backend: postgres")
        return await SqlRepository.open(config.database_url, clock=clock)

    raise ValidationError(f"unknown store: {config.store}")
