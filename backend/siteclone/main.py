import asyncio
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Set

from fastapi import Depends, FastAPI, BackgroundTasks, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .cloner import CloneResult, WebsiteCloner
from .config import LOG_LEVEL, ClonerSettings
from .errors import CloneTimeoutError, CloneValidationError
from .events import Event
from .models import (
    CloneRequestModel,
    CloneResponseModel,
    CloneResultModel,
    CloneSiteResponseModel,
    SiteInfoModel,
    SiteListModel,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

settings = ClonerSettings.from_env()
settings.sites_dir.mkdir(parents=True, exist_ok=True)

# In-memory storage for background clone requests
clone_requests: Dict[str, Dict] = {}

# Keeps references to fire-and-forget status pushes
_pending_pushes: Set[asyncio.Task] = set()


# Store active WebSocket connections
class ConnectionManager:
    def __init__(self):
        # requestId -> Set of connected websockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, request_id: str):
        await websocket.accept()
        self.active_connections.setdefault(request_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, request_id: str):
        if request_id in self.active_connections:
            self.active_connections[request_id].discard(websocket)
            if not self.active_connections[request_id]:
                del self.active_connections[request_id]

    async def broadcast_status(self, request_id: str, data: dict):
        disconnected = set()
        for websocket in list(self.active_connections.get(request_id, ())):
            try:
                await websocket.send_json(data)
            except (WebSocketDisconnect, RuntimeError):
                disconnected.add(websocket)

        for ws in disconnected:
            self.disconnect(ws, request_id)


manager = ConnectionManager()

app = FastAPI(
    title="Website Cloning API",
    description="Clones websites into self-contained local copies carrying a new identity",
    version="0.1.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:4200", "http://localhost", "http://127.0.0.1", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/sites", StaticFiles(directory=str(settings.sites_dir), html=True), name="sites")


def get_settings() -> ClonerSettings:
    return settings


def get_cloner() -> WebsiteCloner:
    return WebsiteCloner(settings=get_settings())


def site_url_for(folder_name: str) -> str:
    return f"/sites/{folder_name}/"


def _site_dir(folder_name: str) -> Path:
    sites_dir = get_settings().sites_dir.resolve()
    target = (sites_dir / folder_name).resolve()
    if target.parent != sites_dir:
        raise HTTPException(status_code=400, detail=f"Invalid site folder: {folder_name}")
    return target


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {"message": "Website Cloning API is running"}


@app.post("/api/sites/clone", response_model=CloneSiteResponseModel)
async def clone_site(request: CloneRequestModel, cloner: WebsiteCloner = Depends(get_cloner)):
    """Clone a website and wait for the bundle"""
    try:
        result = await cloner.clone(
            request.url,
            request.identity.model_dump(),
            previous_identity=request.previous_identity,
        )
    except CloneValidationError as e:
        return _error(400, str(e))
    except CloneTimeoutError as e:
        return _error(504, str(e))
    except Exception as e:
        logger.exception("Clone of %s failed", request.url)
        return _error(500, str(e))

    return CloneSiteResponseModel(
        output_directory=str(result.output_directory),
        folder_name=result.folder_name,
        site_url=site_url_for(result.folder_name),
        is_fallback=result.is_fallback,
        report_summary=result.report_summary,
    )


@app.get("/api/sites", response_model=SiteListModel)
async def list_sites():
    """List the cloned bundles, newest first"""
    sites_dir = get_settings().sites_dir
    folders = [path for path in sites_dir.iterdir() if path.is_dir()] if sites_dir.exists() else []
    folders.sort(key=lambda path: path.stat().st_mtime, reverse=True)
    return SiteListModel(sites=[
        SiteInfoModel(
            folder_name=path.name,
            site_url=site_url_for(path.name),
            has_index=(path / "index.html").is_file(),
            created_at=path.stat().st_mtime,
        )
        for path in folders
    ])


@app.delete("/api/sites/{folder_name}")
async def delete_site(folder_name: str):
    """Delete one cloned bundle"""
    target = _site_dir(folder_name)
    if not target.is_dir():
        raise HTTPException(status_code=404, detail="Site not found")
    shutil.rmtree(target)
    return {"success": True, "message": "Site deleted successfully"}


@app.post("/api/clone", response_model=CloneResponseModel)
async def clone_website(request: CloneRequestModel, background_tasks: BackgroundTasks):
    """Initiate a website cloning process"""
    request_id = str(uuid.uuid4())

    # Store initial request data
    clone_requests[request_id] = {
        "request_id": request_id,
        "status": "pending",
        "url": request.url,
        "submitted_at": datetime.now().isoformat(),
        "result": None
    }

    # Start background task for cloning
    background_tasks.add_task(process_clone_request, request_id=request_id, request=request)

    return {
        "request_id": request_id,
        "status": "pending",
        "url": request.url
    }


@app.get("/api/clone/{request_id}", response_model=CloneResultModel)
async def get_clone_result(request_id: str):
    """Get the result of a cloning request"""
    if request_id not in clone_requests:
        raise HTTPException(status_code=404, detail="Clone request not found")

    request_data = clone_requests[request_id]
    result = request_data.get("result") or {}

    return {
        "request_id": request_id,
        "status": request_data["status"],
        "url": request_data["url"],
        **result,
    }


def _progress_callback(request_id: str):
    def _push(event: Event) -> None:
        if event.name != "clone.phase":
            return
        phase = event.fields.get("phase")
        clone_requests[request_id]["status"] = phase
        task = asyncio.get_running_loop().create_task(manager.broadcast_status(request_id, {
            "request_id": request_id,
            "status": phase,
            "url": clone_requests[request_id]["url"],
        }))
        _pending_pushes.add(task)
        task.add_done_callback(_pending_pushes.discard)

    return _push


def _result_payload(result: CloneResult) -> dict:
    return {
        "output_directory": str(result.output_directory),
        "site_url": site_url_for(result.folder_name),
        "is_fallback": result.is_fallback,
        "report_summary": result.report_summary,
    }


async def process_clone_request(request_id: str, request: CloneRequestModel):
    """Background task to process a website cloning request"""
    if request_id not in clone_requests:
        return

    request_data = clone_requests[request_id]
    cloner = get_cloner()
    cloner.events.callback = _progress_callback(request_id)

    try:
        result = await cloner.clone(
            request.url,
            request.identity.model_dump(),
            previous_identity=request.previous_identity,
        )
    except Exception as e:
        logger.exception("Background clone %s failed", request_id)
        request_data["status"] = "failed"
        request_data["result"] = {"error": str(e)}
        await manager.broadcast_status(request_id, {
            "request_id": request_id,
            "status": "failed",
            "error": str(e)
        })
        return

    request_data["status"] = "completed"
    request_data["result"] = _result_payload(result)
    request_data["completed_at"] = datetime.now().isoformat()
    await manager.broadcast_status(request_id, {
        "request_id": request_id,
        "status": "completed",
        "url": request.url,
        **request_data["result"],
    })


@app.websocket("/ws/{request_id}")
async def websocket_endpoint(websocket: WebSocket, request_id: str):
    await manager.connect(websocket, request_id)
    try:
        # Send initial status if request exists
        if request_id in clone_requests:
            request_data = clone_requests[request_id]
            status_data = {
                "request_id": request_id,
                "status": request_data["status"],
                "url": request_data["url"]
            }
            if request_data["status"] == "failed":
                status_data["error"] = (request_data.get("result") or {}).get("error", "Unknown error")
            await websocket.send_json(status_data)

        # Keep the connection open until client disconnects
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        manager.disconnect(websocket, request_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
