from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.logging import configure_logging
from app.api.traces import router as api_router
from app.dependencies import get_trace_store

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield
    # Detach live consumers so no background read outlives the app
    get_trace_store().shutdown()

app = FastAPI(
    title=settings.service_name,
    lifespan=lifespan
)

# CORS middleware - allow the trace viewer to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/v1")

@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.service_name}


def run() -> None:
    """Serve the API with uvicorn (console entry point)."""
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
