from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1.router import api_router
from app.services.pipeline import build_pipeline
from contextlib import asynccontextmanager


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Producers only; jobs are consumed by the worker process (python -m app.worker)
    app.state.pipeline = build_pipeline()
    yield


app = FastAPI(
    title="Dealership Lead Pipeline API",
    description="Lead scoring, assignment and campaign dispatch for the dealership platform",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "dealership-lead-pipeline", "version": "0.1.0"}
