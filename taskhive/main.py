"""
Taskhive - FastAPI Application

Task tracker with a changelog-derived review workflow:
- Tasks move Todo -> In Progress -> Done under a fixed transition table
- Reviewers append feedback records against Done tasks
- Review state is always re-derived from the changelog, never stored
- A project is approved only when every task's review is approved, writing
  exactly one project-level completion record
"""

import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from . import __version__
from .config import load_settings
from .router import router as taskhive_router

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("taskhive")

app = FastAPI(
    title="Taskhive",
    description="Task tracker with review workflow",
    version=__version__
)

app.include_router(taskhive_router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": __version__}


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Return structured error bodies unwrapped."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": True, "message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Taskhive {__version__} starting up (data dir: {settings.data_dir})")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
