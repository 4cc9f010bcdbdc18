from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CONFIG
from .routes import auth as auth_routes
from .routes import children as children_routes
from .routes import reports as reports_routes

app = FastAPI(
    title="CareTrack API",
    version="0.1.0",
    description="Developmental logs, moods and progress reports for caregivers and educators",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(auth_routes.router)
app.include_router(children_routes.router)
app.include_router(reports_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {"message": "CareTrack API ready"}
