from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from host import LocalHostActions, ModeratorDirectory
from router import RequestRouter
from socket_manager import SocketManager
from storage import StoreError, create_store

logger = logging.getLogger(__name__)

store = create_store()
host_actions = LocalHostActions()
moderators = ModeratorDirectory.from_config()
router = RequestRouter(store, host_actions, moderators)
socket_manager = SocketManager(router)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Debate Dueler backend (store: %s)", type(store).__name__)
    yield
    await store.close()
    logger.info("Shutting down Debate Dueler backend")


app = FastAPI(title="Debate Dueler Backend", lifespan=lifespan)


@app.websocket("/ws/{post_id}")
async def websocket_endpoint(websocket: WebSocket, post_id: str, user_id: str = "",
                             username: str = "", community: str = config.DEFAULT_COMMUNITY):
    await socket_manager.connect(websocket, post_id, user_id,
                                 username=username, community=community)


@app.websocket("/ws")
async def community_websocket_endpoint(websocket: WebSocket, user_id: str = "",
                                       username: str = "", community: str = config.DEFAULT_COMMUNITY):
    """Connection without a post, used from community menus to create posts."""
    await socket_manager.connect(websocket, None, user_id,
                                 username=username, community=community)


@app.get("/posts/{post_id}/leaderboard")
async def get_leaderboard(post_id: str, user_id: str = ""):
    try:
        leaderboard = await store.get_leaderboard(post_id)
        rank = await store.get_player_rank(post_id, user_id or None)
    except StoreError as e:
        logger.warning("Leaderboard read failed for post %s: %s", post_id, e)
        raise HTTPException(status_code=503, detail="Leaderboard temporarily unavailable")
    return {
        "leaderboard": [entry.to_wire() for entry in leaderboard],
        "playerRank": rank,
    }


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    socket_manager.allowed_origins = origins
else:
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Debate Dueler API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "connections": socket_manager.active_connections}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
