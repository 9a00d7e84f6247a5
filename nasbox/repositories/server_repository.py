"""Server repository."""

import logging
from typing import Any, List, Optional
from sqlalchemy.exc import IntegrityError

from nasbox.models.plan import Plan
from nasbox.models.server import Server
from nasbox.repositories.base import SessionRepository

logger = logging.getLogger(__name__)


class ServerRepository(SessionRepository):
    """Persistence for SMB servers."""

    def get_server(self, server_id: int) -> Optional[Server]:
        with self._session() as db:
            return db.query(Server).filter(Server.id == server_id).first()

    def list_servers(self) -> List[Server]:
        with self._session() as db:
            return db.query(Server).order_by(Server.name.asc()).all()

    def create_server(self, server: Server) -> Server:
        """Insert a server.

        Raises:
            ValueError: If a server with the same name already exists.
        """
        with self._session() as db:
            try:
                db.add(server)
                db.commit()
                db.refresh(server)
                logger.info(f"Server '{server.name}' created with id {server.id}")
                return server
            except IntegrityError as e:
                db.rollback()
                logger.error(f"Failed to create server '{server.name}': {e}")
                raise ValueError(f"Server with name '{server.name}' already exists")

    def update_server(self, server_id: int, **changes: Any) -> Optional[Server]:
        with self._session() as db:
            server = db.query(Server).filter(Server.id == server_id).first()
            if not server:
                return None
            for field, value in changes.items():
                setattr(server, field, value)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.error(f"Failed to update server {server_id}: {e}")
                raise ValueError(f"Server with name '{changes.get('name')}' already exists")
            db.refresh(server)
            return server

    def delete_server(self, server_id: int) -> bool:
        """Delete a server.

        Raises:
            ValueError: If a plan still targets the server.
        """
        with self._session() as db:
            server = db.query(Server).filter(Server.id == server_id).first()
            if not server:
                return False
            in_use = db.query(Plan).filter(Plan.server_id == server_id).count()
            if in_use:
                raise ValueError(f"Server {server_id} is used by {in_use} plan(s)")
            db.delete(server)
            db.commit()
            logger.info(f"Server {server_id} deleted")
            return True
