"""Server management with credentials kept in the credential store."""

import logging
import uuid
from typing import Any, List, Optional

from nasbox.models.server import Server
from nasbox.repositories.server_repository import ServerRepository
from nasbox.services.connection_test_service import parse_share_target
from nasbox.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class ServerService:
    """Creates, updates and deletes servers together with their stored passwords."""

    def __init__(self, server_repository: ServerRepository, credential_store: CredentialStore):
        """Initialize server service.

        Args:
            server_repository: Persistence for servers.
            credential_store: Store holding passwords by alias.
        """
        self.server_repository = server_repository
        self.credential_store = credential_store

    def create_server(
        self,
        name: str,
        host: str,
        share_name: str = "",
        base_path: str = "",
        domain: str = "",
        username: str = "",
        password: str = ""
    ) -> Server:
        """Add a server and store its password under a fresh alias.

        ``host`` may carry the share, e.g. ``smb://nas.local/photos``.

        Raises:
            ValueError: If the name is taken or the host is blank.
        """
        target = parse_share_target(host, share_name)
        alias = f"server-{uuid.uuid4().hex}"
        self.credential_store.save_secret(alias, password or "")

        server = Server(
            name=name.strip(),
            host=target.host,
            share_name=target.share_name,
            base_path=(base_path or "").strip(),
            domain=(domain or "").strip(),
            username=(username or "").strip(),
            credential_alias=alias,
        )
        try:
            return self.server_repository.create_server(server)
        except ValueError:
            self.credential_store.delete_secret(alias)
            raise

    def update_server(self, server_id: int, password: Optional[str] = None, **changes: Any) -> Optional[Server]:
        """Update server fields; a non-None password replaces the stored one.

        Returns:
            The updated server, or None if it does not exist.
        """
        server = self.server_repository.get_server(server_id)
        if server is None:
            return None

        fields = {key: value for key, value in changes.items() if value is not None}
        if "host" in fields:
            target = parse_share_target(fields["host"], fields.get("share_name", ""))
            fields["host"] = target.host
            if target.share_name:
                fields["share_name"] = target.share_name

        if password is not None:
            self.credential_store.save_secret(server.credential_alias, password)

        return self.server_repository.update_server(server_id, **fields) if fields else server

    def delete_server(self, server_id: int) -> bool:
        """Delete a server and its stored password.

        Raises:
            ValueError: If a plan still uses the server.
        """
        server = self.server_repository.get_server(server_id)
        if server is None:
            return False
        deleted = self.server_repository.delete_server(server_id)
        if deleted:
            self.credential_store.delete_secret(server.credential_alias)
        return deleted

    def list_servers(self) -> List[Server]:
        return self.server_repository.list_servers()

    def get_server(self, server_id: int) -> Optional[Server]:
        return self.server_repository.get_server(server_id)

    def has_credentials(self, server: Server) -> bool:
        return self.credential_store.load_secret(server.credential_alias) is not None
