"""Server API endpoints."""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from nasbox.api.dependencies import get_container
from nasbox.container import AppContainer
from nasbox.models.server import Server
from nasbox.services.connection_test_service import ConnectionTestResult, parse_share_target
from nasbox.services.failure_classifier import classify, connection_test_error
from nasbox.services.share_client import ShareError

router = APIRouter(prefix="/api/servers", tags=["servers"])


class ServerCreate(BaseModel):
    """Server creation request."""

    name: str
    host: str
    share_name: str = ""
    base_path: str = ""
    domain: str = ""
    username: str = ""
    password: str = ""


class ServerUpdate(BaseModel):
    """Server update request. A password replaces the stored one."""

    name: Optional[str] = None
    host: Optional[str] = None
    share_name: Optional[str] = None
    base_path: Optional[str] = None
    domain: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class ServerResponse(BaseModel):
    """Server response. Passwords are never returned."""

    id: int
    name: str
    host: str
    share_name: str
    base_path: str
    domain: str
    username: str
    has_credentials: bool
    created_at: str
    updated_at: str
    last_test_status: Optional[str] = None
    last_test_at: Optional[str] = None
    last_test_latency_ms: Optional[int] = None
    last_test_error_category: Optional[str] = None
    last_test_error_message: Optional[str] = None


class ConnectionTestRequest(BaseModel):
    """Draft server connection test request."""

    host: str
    share_name: str = ""
    username: str = ""
    password: str = ""
    domain: str = ""


class ConnectionTestResponse(BaseModel):
    """Connection test outcome."""

    success: bool
    category: str
    message: str
    recovery_hint: Optional[str] = None
    technical_detail: Optional[str] = None
    latency_ms: Optional[int] = None


class DiscoveredServerResponse(BaseModel):
    host: str
    ip_address: str


class SharesRequest(BaseModel):
    """Draft host whose shares to list."""

    host: str
    username: str = ""
    password: str = ""
    domain: str = ""


class SharesResponse(BaseModel):
    host: str
    shares: List[str]


class BrowseResponse(BaseModel):
    path: str
    directories: List[str]


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def _server_response(server: Server, container: AppContainer) -> ServerResponse:
    return ServerResponse(
        id=server.id,
        name=server.name,
        host=server.host,
        share_name=server.share_name,
        base_path=server.base_path,
        domain=server.domain,
        username=server.username,
        has_credentials=container.server_service.has_credentials(server),
        created_at=server.created_at.isoformat(),
        updated_at=server.updated_at.isoformat(),
        last_test_status=server.last_test_status,
        last_test_at=_isoformat(server.last_test_at),
        last_test_latency_ms=server.last_test_latency_ms,
        last_test_error_category=server.last_test_error_category,
        last_test_error_message=server.last_test_error_message,
    )


def _test_response(result: ConnectionTestResult) -> ConnectionTestResponse:
    return ConnectionTestResponse(
        success=result.success,
        category=result.category.value,
        message=result.message,
        recovery_hint=result.recovery_hint,
        technical_detail=result.technical_detail,
        latency_ms=result.latency_ms,
    )


@router.post("", response_model=ServerResponse, status_code=201)
async def create_server(server: ServerCreate, container: AppContainer = Depends(get_container)):
    """Create a new server. The password is encrypted at rest."""
    try:
        created = container.server_service.create_server(
            name=server.name,
            host=server.host,
            share_name=server.share_name,
            base_path=server.base_path,
            domain=server.domain,
            username=server.username,
            password=server.password,
        )
        return _server_response(created, container)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create server: {str(e)}")


@router.get("", response_model=List[ServerResponse])
async def list_servers(container: AppContainer = Depends(get_container)):
    try:
        return [_server_response(s, container) for s in container.server_service.list_servers()]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list servers: {str(e)}")


@router.post("/test", response_model=ConnectionTestResponse)
async def test_draft_server(request: ConnectionTestRequest, container: AppContainer = Depends(get_container)):
    """Test a server before saving it."""
    result = await container.connection_tests.test(
        request.host, request.share_name, request.username, request.password, request.domain
    )
    return _test_response(result)


@router.post("/shares", response_model=SharesResponse)
async def list_draft_shares(request: SharesRequest, container: AppContainer = Depends(get_container)):
    """List the disk shares of a host before saving a server for it."""
    try:
        shares = await container.connection_tests.list_shares(
            request.host, request.username, request.password, request.domain
        )
        return SharesResponse(host=parse_share_target(request.host).host, shares=shares)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ShareError as e:
        raise HTTPException(status_code=502, detail=connection_test_error(classify(e)).message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list shares: {str(e)}")


@router.get("/discover", response_model=List[DiscoveredServerResponse])
async def discover_servers(container: AppContainer = Depends(get_container)):
    """Scan the local subnet for hosts answering on the SMB port."""
    try:
        servers = await container.discovery.discover()
        return [DiscoveredServerResponse(host=s.host, ip_address=s.ip_address) for s in servers]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to discover servers: {str(e)}")


@router.get("/{server_id}", response_model=ServerResponse)
async def get_server(server_id: int, container: AppContainer = Depends(get_container)):
    server = container.server_service.get_server(server_id)
    if not server:
        raise HTTPException(status_code=404, detail=f"Server {server_id} not found")
    return _server_response(server, container)


@router.put("/{server_id}", response_model=ServerResponse)
async def update_server(
    server_id: int,
    server_update: ServerUpdate,
    container: AppContainer = Depends(get_container)
):
    try:
        updated = container.server_service.update_server(server_id, **server_update.model_dump())
        if not updated:
            raise HTTPException(status_code=404, detail=f"Server {server_id} not found")
        return _server_response(updated, container)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update server: {str(e)}")


@router.delete("/{server_id}", status_code=204)
async def delete_server(server_id: int, container: AppContainer = Depends(get_container)):
    """Delete a server and its stored password. Fails while a plan uses it."""
    try:
        if not container.server_service.delete_server(server_id):
            raise HTTPException(status_code=404, detail=f"Server {server_id} not found")
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete server: {str(e)}")


@router.post("/{server_id}/test", response_model=ConnectionTestResponse)
async def test_server(server_id: int, container: AppContainer = Depends(get_container)):
    """Test a saved server and record the outcome on it."""
    if not container.server_service.get_server(server_id):
        raise HTTPException(status_code=404, detail=f"Server {server_id} not found")
    result = await container.connection_tests.test_persisted_server(server_id)
    return _test_response(result)


@router.get("/{server_id}/browse", response_model=BrowseResponse)
async def browse_server(server_id: int, path: str = "", container: AppContainer = Depends(get_container)):
    """List directories on the server's share, for picking a base path."""
    try:
        directories = await container.connection_tests.browse(server_id, path)
        return BrowseResponse(path=path, directories=directories)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ShareError as e:
        raise HTTPException(status_code=502, detail=connection_test_error(classify(e)).message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to browse server: {str(e)}")


@router.get("/{server_id}/shares", response_model=SharesResponse)
async def list_server_shares(server_id: int, container: AppContainer = Depends(get_container)):
    """List the disk shares on a saved server's host."""
    server = container.server_service.get_server(server_id)
    if not server:
        raise HTTPException(status_code=404, detail=f"Server {server_id} not found")
    try:
        shares = await container.connection_tests.list_server_shares(server_id)
        return SharesResponse(host=server.host, shares=shares)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ShareError as e:
        raise HTTPException(status_code=502, detail=connection_test_error(classify(e)).message)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list shares: {str(e)}")
