"""Main FastAPI application and server startup."""

from fastapi import FastAPI
import uvicorn

from agent_memory import __version__
from .memory import router as memory_router

app = FastAPI(
    title="Agent Memory API",
    description="Long-term semantic memory for conversational agents",
    version=__version__,
)

app.include_router(memory_router, prefix="/api", tags=["memory"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Agent Memory API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def main() -> None:
    """Run the API server."""
    uvicorn.run("agent_memory.api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
