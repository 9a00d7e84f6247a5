"""SMB share transport."""

import asyncio
import errno
import logging
import posixpath
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, List, Optional

import smbclient
from smb.SMBConnection import SMBConnection
from smb.base import NotConnectedError, NotReadyError, SharedDevice, SMBTimeout
from smbprotocol.exceptions import (
    AccessDenied,
    BadNetworkName,
    LogonFailure,
    SMBAuthenticationError,
    SMBConnectionClosed,
    SMBOSError,
)
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from nasbox.config import settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, Optional[int]], None]

UPLOAD_CHUNK_SIZE = 1024 * 1024


class ShareError(Exception):
    """Base class for typed share transport failures."""


class ShareUnreachableError(ShareError):
    pass


class ShareAuthenticationError(ShareError):
    pass


class ShareNotFoundError(ShareError):
    pass


class SharePermissionError(ShareError):
    pass


class ShareTimeoutError(ShareError):
    pass


class ShareInterruptedError(ShareError):
    pass


@dataclass(frozen=True)
class ShareConnectionRequest:
    """Where and as whom to connect."""

    host: str
    share_name: str
    username: str = ""
    password: str = ""
    domain: str = ""

    def __repr__(self) -> str:
        return (
            f"ShareConnectionRequest(host={self.host!r}, share_name={self.share_name!r}, "
            f"username={self.username!r}, domain={self.domain!r})"
        )


class ShareClient(ABC):
    """Remote share operations used by runs, connection tests and browsing."""

    @abstractmethod
    async def test_connection(self, request: ShareConnectionRequest) -> int:
        """Connect and authenticate; returns latency in milliseconds."""

    @abstractmethod
    async def list_shares(self, request: ShareConnectionRequest) -> List[str]:
        """Disk share names the host exposes, sorted; ``request.share_name`` is ignored."""

    @abstractmethod
    async def list_directories(self, request: ShareConnectionRequest, path: str = "") -> List[str]:
        """Directory names directly under ``path`` on the share, sorted."""

    @abstractmethod
    async def upload_file(
        self,
        request: ShareConnectionRequest,
        remote_path: str,
        stream: BinaryIO,
        size_bytes: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> None:
        """Write ``stream`` to ``remote_path`` (relative to the share root)."""


def _unc(host: str, share_name: str, path: str = "") -> str:
    segments = [segment for segment in path.replace("\\", "/").split("/") if segment]
    return "\\".join([f"\\\\{host}", share_name] + segments)


def _translate(error: Exception) -> Exception:
    """Map smbprotocol and socket errors onto the ShareError hierarchy."""
    if isinstance(error, ShareError):
        return error
    if isinstance(error, (LogonFailure, SMBAuthenticationError)):
        return ShareAuthenticationError(str(error))
    if isinstance(error, BadNetworkName):
        return ShareNotFoundError(str(error))
    if isinstance(error, AccessDenied):
        return SharePermissionError(str(error))
    if isinstance(error, SMBConnectionClosed):
        return ShareInterruptedError(str(error))
    if isinstance(error, NotReadyError):
        return ShareAuthenticationError(str(error))
    if isinstance(error, SMBTimeout):
        return ShareTimeoutError(str(error))
    if isinstance(error, NotConnectedError):
        return ShareInterruptedError(str(error))
    if isinstance(error, SMBOSError) and error.errno == errno.EACCES:
        return SharePermissionError(str(error))
    return error


class SmbShareClient(ShareClient):
    """ShareClient backed by smbprotocol's high level ``smbclient`` API.

    ``smbclient`` is blocking, so every call runs in a worker thread. Uploads
    are written to a temporary ``.part`` file and renamed into place once the
    whole stream has been copied. Share enumeration goes over pysmb, which
    speaks the srvsvc RPC that ``smbclient`` does not expose.
    """

    def __init__(
        self,
        port: Optional[int] = None,
        connection_timeout: Optional[int] = None,
        client_name: Optional[str] = None
    ):
        self.port = port or settings.smb_port
        self.connection_timeout = connection_timeout or settings.smb_connection_timeout_seconds
        self.client_name = client_name or settings.device_label

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((ConnectionResetError, ConnectionAbortedError, SMBConnectionClosed)),
        reraise=True
    )
    def _register_session(self, request: ShareConnectionRequest) -> None:
        username = request.username.strip() or None
        if username and request.domain.strip():
            username = f"{request.domain.strip()}\\{username}"

        smbclient.register_session(
            request.host,
            username=username,
            password=request.password or None,
            port=self.port,
            connection_timeout=self.connection_timeout,
        )

    def _run(self, request: ShareConnectionRequest, operation: Callable[[], object]):
        try:
            self._register_session(request)
            return operation()
        except Exception as e:
            translated = _translate(e)
            if translated is e:
                raise
            raise translated from e

    async def test_connection(self, request: ShareConnectionRequest) -> int:
        def operation() -> None:
            if request.share_name.strip():
                smbclient.listdir(_unc(request.host, request.share_name))

        def timed() -> int:
            started = time.monotonic()
            self._run(request, operation)
            return int((time.monotonic() - started) * 1000)

        latency = await asyncio.to_thread(timed)
        logger.info(f"Connection test to {request.host}/{request.share_name} succeeded in {latency}ms")
        return latency

    async def list_shares(self, request: ShareConnectionRequest) -> List[str]:
        def operation() -> List[str]:
            connection = SMBConnection(
                request.username.strip(),
                request.password,
                self.client_name,
                request.host,
                domain=request.domain.strip(),
                use_ntlm_v2=True,
                is_direct_tcp=True,
            )
            try:
                if not connection.connect(request.host, self.port, timeout=self.connection_timeout):
                    raise ShareAuthenticationError(f"Authentication to {request.host} was rejected")
                devices = connection.listShares(timeout=self.connection_timeout)
            finally:
                connection.close()

            names = {
                device.name.strip()
                for device in devices
                if device.type == SharedDevice.DISK_TREE and not device.isSpecial
                and device.name.strip() and not device.name.strip().endswith("$")
            }
            return sorted(names, key=str.lower)

        try:
            shares = await asyncio.to_thread(operation)
        except Exception as e:
            translated = _translate(e)
            if translated is e:
                raise
            raise translated from e
        logger.info(f"Found {len(shares)} share(s) on {request.host}")
        return shares

    async def list_directories(self, request: ShareConnectionRequest, path: str = "") -> List[str]:
        def operation() -> List[str]:
            directories = [
                entry.name
                for entry in smbclient.scandir(_unc(request.host, request.share_name, path))
                if entry.is_dir() and entry.name not in (".", "..")
            ]
            return sorted(directories, key=str.lower)

        return await asyncio.to_thread(self._run, request, operation)

    async def upload_file(
        self,
        request: ShareConnectionRequest,
        remote_path: str,
        stream: BinaryIO,
        size_bytes: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> None:
        directory, filename = posixpath.split(remote_path.replace("\\", "/").strip("/"))
        final_path = _unc(request.host, request.share_name, remote_path)
        temp_name = f".{filename}.{uuid.uuid4().hex[:8]}.part"
        temp_path = _unc(request.host, request.share_name, posixpath.join(directory, temp_name))

        def operation() -> None:
            if directory:
                smbclient.makedirs(_unc(request.host, request.share_name, directory), exist_ok=True)

            written = 0
            try:
                with smbclient.open_file(temp_path, mode="wb") as remote:
                    while True:
                        chunk = stream.read(UPLOAD_CHUNK_SIZE)
                        if not chunk:
                            break
                        remote.write(chunk)
                        written += len(chunk)
                        if progress_callback:
                            progress_callback(written, size_bytes)
                smbclient.replace(temp_path, final_path)
            except Exception:
                try:
                    smbclient.remove(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove partial upload {temp_path}: {cleanup_error}")
                raise

        await asyncio.to_thread(self._run, request, operation)
        logger.info(f"Uploaded {remote_path} to {request.host}/{request.share_name}")
