"""MCP connection commands and saved server management API."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_db
from app.api.envelope import err, ok
from app.middleware.error_handler import full_error_message
from app.schemas.mcp import (
    CallToolRequest,
    ConnectMCPServerRequest,
    CreateMCPServerRequest,
    MCPCommandAck,
    MCPConnectionOut,
    MCPServerOut,
    MCPServerTemplateOut,
    ReadResourceRequest,
    SetMCPServerEnabledRequest,
    UpdateMCPServerRequest,
)
from app.services.mcp_service import MCPService

router = APIRouter(prefix="/api/mcp", tags=["mcp"])


@router.post("/connections")
async def connect_mcp_server(request: ConnectMCPServerRequest):
    """Spawn a server process and register it under `name`."""
    data = await MCPService().connect(request.name, request.command, request.args, request.env)
    return ok(MCPCommandAck(**data).model_dump())


@router.get("/connections")
async def list_connected_servers():
    return ok(await MCPService().list_connections())


@router.get("/connections/details")
async def list_connection_details():
    details = await MCPService().connection_details()
    return ok([MCPConnectionOut(**d).model_dump() for d in details])


@router.delete("/connections/{name}")
async def disconnect_mcp_server(name: str):
    data = await MCPService().disconnect(name)
    return ok(MCPCommandAck(**data).model_dump())


@router.post("/connections/{name}/restart")
async def restart_mcp_server(name: str):
    """Stop the server and relaunch it with its original command, args and env."""
    data = await MCPService().restart(name)
    return ok(MCPCommandAck(**data).model_dump())


@router.get("/connections/{name}/tools")
async def list_mcp_tools(name: str):
    return ok(await MCPService().list_tools(name))


@router.post("/connections/{name}/tools/call")
async def call_mcp_tool(name: str, request: CallToolRequest):
    return ok(await MCPService().call_tool(name, request.toolName, request.arguments))


@router.get("/connections/{name}/resources")
async def list_mcp_resources(name: str):
    return ok(await MCPService().list_resources(name))


@router.post("/connections/{name}/resources/read")
async def read_mcp_resource(name: str, request: ReadResourceRequest):
    return ok(await MCPService().read_resource(name, request.uri))


@router.get("/templates")
def list_mcp_templates():
    return ok([MCPServerTemplateOut(**t).model_dump() for t in MCPService.list_templates()])


@router.get("/servers")
async def list_mcp_servers(db=Depends(get_db)):
    """List saved server configurations."""
    try:
        servers = await MCPService(db).list_servers()
        return ok([MCPServerOut(**s).model_dump() for s in servers])
    except Exception as exc:
        return JSONResponse(status_code=500, content=err(full_error_message(exc)).model_dump())


@router.post("/servers")
def create_mcp_server(request: CreateMCPServerRequest, db=Depends(get_db)):
    try:
        data = MCPService(db).create_server(
            name=request.name,
            command=request.command,
            args=request.args,
            env=request.env,
            description=request.description,
            category=request.category,
        )
        return ok(MCPServerOut(**data).model_dump())
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())


@router.get("/servers/{server_id}")
async def get_mcp_server(server_id: str, db=Depends(get_db)):
    found = await MCPService(db).get_server(server_id)
    if not found:
        return JSONResponse(status_code=404, content=err("Server not found").model_dump())
    return ok(MCPServerOut(**found).model_dump())


@router.put("/servers/{server_id}")
def update_mcp_server(server_id: str, request: UpdateMCPServerRequest, db=Depends(get_db)):
    try:
        data = MCPService(db).update_server(
            server_id,
            name=request.name,
            command=request.command,
            args=request.args,
            env=request.env,
            description=request.description,
            category=request.category,
        )
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())
    if data is None:
        return JSONResponse(status_code=404, content=err("Server not found").model_dump())
    return ok(MCPServerOut(**data).model_dump())


@router.delete("/servers/{server_id}")
def delete_mcp_server(server_id: str, db=Depends(get_db)):
    try:
        deleted = MCPService(db).delete_server(server_id)
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())
    if not deleted:
        return JSONResponse(status_code=404, content=err("Server not found").model_dump())
    return ok({"deleted": True})


@router.patch("/servers/{server_id}/enabled")
def set_mcp_server_enabled(
    server_id: str,
    request: SetMCPServerEnabledRequest,
    db=Depends(get_db),
):
    data = MCPService(db).set_server_enabled(server_id, request.enabled)
    if data is None:
        return JSONResponse(status_code=404, content=err("Server not found").model_dump())
    return ok(MCPServerOut(**data).model_dump())


@router.post("/servers/{server_id}/connect")
async def connect_saved_mcp_server(server_id: str, db=Depends(get_db)):
    """Connect a saved server configuration under its name."""
    data = await MCPService(db).connect_server(server_id)
    if data is None:
        return JSONResponse(status_code=404, content=err("Server not found").model_dump())
    return ok(MCPCommandAck(**data).model_dump())
