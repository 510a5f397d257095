"""
Local status store.
Durable per-panel cache on the device, with change notifications.
"""
import os
from typing import Callable, Iterable, List, Optional, Set

import structlog
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..db import LocalBase, make_engine
from ..models.local import PanelLocalStatus


logger = structlog.get_logger(__name__)

Subscriber = Callable[[Set[str]], None]


class LocalStatusStore:
    """
    Keyed table of PanelLocalStatus rows that survives restarts.

    The store owns a single session: one reconciliation context per device
    mutates it. Consumers that need to react to changes subscribe instead of
    polling; they receive the set of panel ids touched by each commit.
    """

    def __init__(self, url: Optional[str] = None, engine=None):
        url = url or settings.local_store_url
        if engine is None:
            # Ensure local SQLite directory exists
            if url.startswith("sqlite:///./"):
                directory = os.path.dirname(url[len("sqlite:///"):])
                if directory:
                    os.makedirs(directory, exist_ok=True)
            engine = make_engine(url)
        self.engine = engine
        LocalBase.metadata.create_all(bind=self.engine)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)
        self.session: Session = self._session_factory()
        self._subscribers: List[Subscriber] = []

    # Reads

    def get(self, panel_id: str) -> Optional[PanelLocalStatus]:
        return self.session.get(PanelLocalStatus, panel_id)

    def get_or_create(self, panel_id: str) -> PanelLocalStatus:
        """Records are created lazily on first action or first pull mentioning the panel."""
        record = self.get(panel_id)
        if record is None:
            record = PanelLocalStatus(panel_id=panel_id)
            self.session.add(record)
            self.session.flush()
        return record

    def all(self) -> List[PanelLocalStatus]:
        return self.session.query(PanelLocalStatus).order_by(PanelLocalStatus.panel_id).all()

    def pending(self) -> List[PanelLocalStatus]:
        return (
            self.session.query(PanelLocalStatus)
            .filter(PanelLocalStatus.needs_sync.is_(True))
            .order_by(PanelLocalStatus.panel_id)
            .all()
        )

    # Writes

    def commit(self, panel_ids: Iterable[str] = ()) -> None:
        """Persist pending changes and notify subscribers with the touched ids."""
        self.session.commit()
        changed = set(panel_ids)
        if changed:
            self._notify(changed)

    def rollback(self) -> None:
        self.session.rollback()

    # Subscriptions

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, changed: Set[str]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(set(changed))
            except Exception:
                logger.exception("store_subscriber_failed", panel_ids=sorted(changed))

    def close(self) -> None:
        self.session.close()
        self.engine.dispose()
