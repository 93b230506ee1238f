from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from spaces_config import get_config
from spaces_sync import SpacesSynchronizer
from error_handler import api_error_handler, get_error_handler

config = get_config()

logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    synchronizer = SpacesSynchronizer(config=config)
    app.state.synchronizer = synchronizer
    synchronizer.start_monitoring()
    try:
        yield
    finally:
        synchronizer.close()
        app.state.synchronizer = None


app = FastAPI(
    title="spacesync API",
    version="0.1.0",
    description="Live desktop spaces and windows from the running tiling window manager",
    lifespan=lifespan
)

# Local consumers such as status bars
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.add_exception_handler(HTTPException, api_error_handler)
app.add_exception_handler(Exception, api_error_handler)


class SpaceFocusRequest(BaseModel):
    space_id: str
    need_window_focus: bool = False


class WindowFocusRequest(BaseModel):
    window_id: int


def get_synchronizer(request: Request) -> SpacesSynchronizer:
    synchronizer: Optional[SpacesSynchronizer] = getattr(request.app.state, "synchronizer", None)
    if synchronizer is None:
        raise HTTPException(status_code=503, detail="Spaces synchronizer is not running")
    return synchronizer


# Spaces Endpoints

@app.get("/spaces")
async def get_spaces(sync: SpacesSynchronizer = Depends(get_synchronizer)):
    """Current spaces with their windows, sorted by space id."""
    spaces = [space.to_dict() for space in sync.current_spaces()]
    logging.debug(f"SPACES_SUCCESS: count={len(spaces)}")
    return {
        "success": True,
        "spaces": spaces,
        "count": len(spaces)
    }


@app.get("/spaces/status")
async def get_spaces_status(sync: SpacesSynchronizer = Depends(get_synchronizer)):
    """Backend and monitoring status."""
    return {
        "success": True,
        "status": sync.get_status()
    }


@app.get("/spaces/focused")
def get_focused(sync: SpacesSynchronizer = Depends(get_synchronizer)):
    """Focused space and window as reported by the backend right now."""
    # Plain def: the backend CLI calls block, so this runs in the threadpool
    focused = sync.get_focused_ids()
    return {
        "success": True,
        "space_id": focused["space_id"],
        "window_id": focused["window_id"]
    }


@app.post("/spaces/focus")
async def focus_space(request: SpaceFocusRequest, sync: SpacesSynchronizer = Depends(get_synchronizer)):
    """Request a space switch. The request is queued, not awaited."""
    if not request.space_id.strip():
        raise HTTPException(status_code=400, detail="space_id must not be empty")

    sync.request_focus_space(request.space_id, request.need_window_focus)
    logging.info(f"SPACE_FOCUS_REQUESTED: space={request.space_id}, window_focus={request.need_window_focus}")
    return {
        "success": True,
        "space_id": request.space_id,
        "message": f"Focus requested for space {request.space_id}"
    }


@app.post("/windows/focus")
async def focus_window(request: WindowFocusRequest, sync: SpacesSynchronizer = Depends(get_synchronizer)):
    """Request a window focus. The request is queued, not awaited."""
    sync.request_focus_window(request.window_id)
    logging.info(f"WINDOW_FOCUS_REQUESTED: window={request.window_id}")
    return {
        "success": True,
        "window_id": request.window_id,
        "message": f"Focus requested for window {request.window_id}"
    }


# Error Endpoints

@app.get("/errors/stats")
async def get_error_stats():
    """Error counts by category, severity and component."""
    return {
        "success": True,
        "statistics": get_error_handler().get_error_statistics()
    }


@app.get("/errors/recent")
async def get_recent_errors(limit: int = 50):
    """Most recent recorded errors, newest first."""
    if limit < 1 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    errors = get_error_handler().get_recent_errors(limit=limit)
    return {
        "success": True,
        "errors": [error.to_dict() for error in errors],
        "count": len(errors)
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.api_host, port=config.api_port)
