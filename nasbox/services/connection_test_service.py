"""Server connection tests and share browsing."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from nasbox.database.database import utcnow
from nasbox.services.credential_store import CredentialStore
from nasbox.services.failure_classifier import ErrorCategory, classify, connection_test_error
from nasbox.services.share_client import ShareClient, ShareConnectionRequest

logger = logging.getLogger(__name__)

HOST_FORMAT_HINT = "Use host like nas.local (or smb://nas.local/share) and verify share."


@dataclass(frozen=True)
class ShareTarget:
    host: str
    share_name: str
    protocol_provided: bool = False


def parse_share_target(host_input: str, share_input: str = "") -> ShareTarget:
    """Split ``smb://host/share``, ``\\\\host\\share`` or a bare host into host and share.

    An explicit share argument wins over a share embedded in the host.

    Raises:
        ValueError: If no host is present.
    """
    raw_host = (host_input or "").strip().replace("\\", "/")
    raw_share = (share_input or "").strip().strip("/\\")

    without_protocol = re.sub(r"^smb://", "", raw_host, flags=re.IGNORECASE)
    segments = [segment for segment in without_protocol.split("/") if segment.strip()]
    if not segments:
        raise ValueError("Host is required.")

    share = raw_share or (segments[1] if len(segments) > 1 else "")
    return ShareTarget(
        host=segments[0].strip(),
        share_name=share.strip(),
        protocol_provided=without_protocol != raw_host,
    )


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    category: ErrorCategory
    message: str
    recovery_hint: Optional[str] = None
    technical_detail: Optional[str] = None
    latency_ms: Optional[int] = None

    @classmethod
    def succeeded(cls, latency_ms: int, endpoint: str) -> "ConnectionTestResult":
        return cls(
            success=True,
            category=ErrorCategory.NONE,
            message=f"Connection succeeded to {endpoint} ({latency_ms}ms).",
            latency_ms=latency_ms,
        )

    @classmethod
    def failed(
        cls,
        category: ErrorCategory,
        message: str,
        recovery_hint: Optional[str] = None,
        technical_detail: Optional[str] = None
    ) -> "ConnectionTestResult":
        return cls(
            success=False,
            category=category,
            message=message,
            recovery_hint=recovery_hint,
            technical_detail=technical_detail,
        )


class ConnectionTestService:
    """Tests saved or draft servers and records diagnostics for saved ones."""

    def __init__(
        self,
        server_repository,
        credential_store: CredentialStore,
        share_client: ShareClient,
        clock: Callable[[], datetime] = utcnow
    ):
        self.server_repository = server_repository
        self.credential_store = credential_store
        self.share_client = share_client
        self.clock = clock

    async def test_persisted_server(self, server_id: int) -> ConnectionTestResult:
        """Test a saved server and store the outcome on it."""
        server = self.server_repository.get_server(server_id)
        if server is None:
            return ConnectionTestResult.failed(
                ErrorCategory.UNKNOWN, "Server not found.", "Reopen the server list and try again."
            )

        password = self.credential_store.load_secret(server.credential_alias)
        if password is None:
            return ConnectionTestResult.failed(
                ErrorCategory.AUTHENTICATION_FAILED,
                "Missing stored password.",
                "Edit the server and save credentials again.",
            )

        result = await self.test(server.host, server.share_name, server.username, password, server.domain)

        self.server_repository.update_server(
            server_id,
            last_test_status="SUCCESS" if result.success else "FAILED",
            last_test_at=self.clock(),
            last_test_latency_ms=result.latency_ms,
            last_test_error_category=result.category.value,
            last_test_error_message=None if result.success else result.message,
        )
        return result

    async def test(
        self,
        host: str,
        share_name: str,
        username: str,
        password: str,
        domain: str = ""
    ) -> ConnectionTestResult:
        """Test a draft server without saving anything."""
        try:
            target = parse_share_target(host, share_name)
        except ValueError as e:
            return ConnectionTestResult.failed(ErrorCategory.UNKNOWN, str(e), HOST_FORMAT_HINT)

        request = ShareConnectionRequest(
            host=target.host,
            share_name=target.share_name,
            username=(username or "").strip(),
            password=password or "",
            domain=(domain or "").strip(),
        )
        try:
            latency = await self.share_client.test_connection(request)
        except Exception as e:
            mapped = connection_test_error(classify(e))
            logger.warning(f"Connection test to {target.host} failed ({mapped.category.value}): {e}")
            return ConnectionTestResult.failed(mapped.category, mapped.message, mapped.recovery_hint, str(e))

        endpoint = f"{target.host}/{target.share_name}" if target.share_name else target.host
        return ConnectionTestResult.succeeded(latency, endpoint)

    async def browse(self, server_id: int, path: str = "") -> List[str]:
        """List directories under ``path`` on a saved server's share.

        Raises:
            ValueError: If the server or its stored password is missing.
        """
        server = self.server_repository.get_server(server_id)
        if server is None:
            raise ValueError(f"Server {server_id} not found")
        password = self.credential_store.load_secret(server.credential_alias)
        if password is None:
            raise ValueError("Server credentials unavailable. Re-save this server.")

        request = ShareConnectionRequest(
            host=server.host,
            share_name=server.share_name,
            username=server.username,
            password=password,
            domain=server.domain,
        )
        return await self.share_client.list_directories(request, path)

    async def list_shares(self, host: str, username: str = "", password: str = "", domain: str = "") -> List[str]:
        """List the disk shares of a draft host.

        Raises:
            ValueError: If no host is present.
        """
        target = parse_share_target(host)
        request = ShareConnectionRequest(
            host=target.host,
            share_name="",
            username=(username or "").strip(),
            password=password or "",
            domain=(domain or "").strip(),
        )
        return await self.share_client.list_shares(request)

    async def list_server_shares(self, server_id: int) -> List[str]:
        """List the disk shares of a saved server's host.

        Raises:
            ValueError: If the server or its stored password is missing.
        """
        server = self.server_repository.get_server(server_id)
        if server is None:
            raise ValueError(f"Server {server_id} not found")
        password = self.credential_store.load_secret(server.credential_alias)
        if password is None:
            raise ValueError("Server credentials unavailable. Re-save this server.")
        return await self.list_shares(server.host, server.username, password, server.domain)
