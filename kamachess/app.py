"""Wiring: settings -> database, image cache, services -> update router. One database session per update."""

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from kamachess.api.gateway import MessagingGateway
from kamachess.api.handlers import Renderer, UpdateRouter
from kamachess.api.models import Update
from kamachess.cache.board_images import BoardImageCache, DiskImageCache
from kamachess.chess.notation import MoveResolver
from kamachess.chess.render import render_png
from kamachess.core.config import Settings, configure_logging
from kamachess.db.database import build_engine, build_session_factory
from kamachess.db.sql_repository import SQLGameRepository
from kamachess.services.chess_service import ChessService
from kamachess.services.history_service import HistoryService

logger = logging.getLogger(__name__)


class ChessBot:
    def __init__(
        self,
        settings: Settings,
        gateway: MessagingGateway,
        engine: Optional[Engine] = None,
        cache: Optional[BoardImageCache] = None,
        renderer: Renderer = render_png,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.engine = engine or build_engine(settings)
        self.session_factory: sessionmaker[Session] = build_session_factory(self.engine)
        self.cache = cache or DiskImageCache(
            settings.image_cache_dir, settings.image_cache_budget_bytes
        )
        self.renderer = renderer
        self.resolver = MoveResolver()

    @classmethod
    def from_env(cls, gateway: MessagingGateway) -> "ChessBot":
        settings = Settings.from_env()
        configure_logging(settings)
        logger.info(
            "Starting with database %s, image cache %s (%d MB), no_trash=%s",
            settings.database_url,
            settings.image_cache_dir,
            settings.image_cache_size_mb,
            settings.no_trash,
        )
        return cls(settings, gateway)

    def handle_update(self, payload: Mapping[str, Any] | Update) -> None:
        """Process one inbound update (a raw webhook payload or an already parsed Update)."""
        update = payload if isinstance(payload, Update) else Update.model_validate(payload)
        with self.session_factory() as db:
            repository = SQLGameRepository(db)
            router = UpdateRouter(
                chess_service=ChessService(repository, self.resolver),
                history_service=HistoryService(repository),
                gateway=self.gateway,
                cache=self.cache,
                settings=self.settings,
                renderer=self.renderer,
            )
            router.process_update(update)
