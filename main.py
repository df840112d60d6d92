import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import likes
import notifications
import project_stats
import search
import search_setup
import voicebanks
from db import SessionLocal, init_db
from errors import setup_exception_handlers
from search_client import get_search_client
from search_sync import SearchIndexSync

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Initialize FastAPI app
app = FastAPI(
    title="UTAU Share API",
    description="Likes, notifications, project search and voicebank samples for the UTAU composition sharing platform.",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

search_index_sync = SearchIndexSync(client=get_search_client(), session_factory=SessionLocal)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    search_index_sync.install()


@app.on_event("shutdown")
def on_shutdown() -> None:
    search_index_sync.uninstall()
    search_index_sync.shutdown()


app.include_router(likes.router, prefix="/like-manager", tags=["likes"])
app.include_router(notifications.router, prefix="/notifications-api", tags=["notifications"])
app.include_router(search.router, prefix="/search", tags=["search"])
app.include_router(search_setup.router, prefix="/search-setup", tags=["search"])
app.include_router(voicebanks.router, prefix="/voicebank-api", tags=["voicebanks"])
app.include_router(project_stats.router, prefix="/project-stats", tags=["projects"])


@app.get("/health", summary="Health check")
async def health_check():
    return {"status": "healthy"}
