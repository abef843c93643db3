from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.db.session import get_db, get_sessionmaker
from app.services.deletion import ExportDeleter
from app.services.export_orchestrator import ExportOrchestrator
from app.services.notifications import get_notifier
from app.services.storage import get_legacy_store, get_object_store
from app.services.storage_uri import StorageResolver


def db_session() -> Generator[Session, None, None]:
    yield from get_db()


def storage_resolver() -> StorageResolver:
    return StorageResolver(
        get_object_store(),
        public_base_url=settings.storage_public_base_url,
        signed_url_ttl=settings.storage_signed_url_expires,
    )


def export_orchestrator(resolver: StorageResolver = Depends(storage_resolver)) -> ExportOrchestrator:
    return ExportOrchestrator(
        session_factory=get_sessionmaker(),
        object_store=get_object_store(),
        legacy_files=get_legacy_store(),
        resolver=resolver,
        notifier=get_notifier(),
        config=settings,
    )


def export_deleter() -> ExportDeleter:
    return ExportDeleter(
        session_factory=get_sessionmaker(),
        object_store=get_object_store(),
        legacy_files=get_legacy_store(),
    )


DbSessionDep = Depends(db_session)
ResolverDep = Depends(storage_resolver)
OrchestratorDep = Depends(export_orchestrator)
DeleterDep = Depends(export_deleter)
