"""
Flowsync Backend - FastAPI Server

Runs as a sidecar next to the desktop app and exposes implementation runs,
drift detection and reconciliation for open projects.
"""

import argparse
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .routes import implementation, projects, reconciliation


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close every open project (and cancel its runs) on shutdown."""
    yield
    projects.close_all()


app = FastAPI(
    title="Flowsync Backend",
    description="Spec-to-code implementation and drift reconciliation sidecar",
    version=__version__,
    lifespan=lifespan,
)

# CORS configuration for the desktop shell and local dev servers
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "tauri://localhost",
        "http://tauri.localhost",
        "https://tauri.localhost",
        "http://localhost",
        "http://127.0.0.1",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
app.include_router(implementation.router, prefix="/api/implementation", tags=["implementation"])
app.include_router(reconciliation.router, prefix="/api/reconcile", tags=["reconciliation"])


@app.get("/health")
def health():
    """Health check endpoint"""
    return {"status": "ok"}


@app.get("/")
def root():
    """Root endpoint with API info"""
    return {
        "name": "Flowsync Backend",
        "version": __version__,
        "docs": "/docs",
    }


def main():
    """Main entry point for the sidecar"""
    parser = argparse.ArgumentParser(description="Flowsync Backend Server")
    parser.add_argument(
        "--port",
        type=int,
        default=9877,
        help="Port to run the server on (default: 9877)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    args = parser.parse_args()

    print(f"Starting Flowsync backend on {args.host}:{args.port}")

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["access"]["fmt"] = "%(asctime)s %(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s"
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s %(levelprefix)s %(message)s"
    log_config["formatters"]["access"]["datefmt"] = "%H:%M:%S"
    log_config["formatters"]["default"]["datefmt"] = "%H:%M:%S"

    # Sessions live in process memory, so the sidecar runs a single worker.
    uvicorn.run(app, host=args.host, port=args.port, log_level="info", log_config=log_config)


if __name__ == "__main__":
    main()
