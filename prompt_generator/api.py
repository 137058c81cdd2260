"""FastAPI backend for batch prompt generation."""

import logging
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import DEFAULT_MODELS, load_api_key, policy_for
from .models import BatchCreate, JobState, ProgressSnapshot, ProviderName
from .orchestrator import PromptJobOrchestrator
from .validation import is_valid_image_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Image Prompt Generator API",
    description="API for generating image-generation prompts from image URLs",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_orchestrator: Optional[PromptJobOrchestrator] = None


def get_orchestrator() -> PromptJobOrchestrator:
    """Get or create the shared orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PromptJobOrchestrator()
    return _orchestrator


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Image Prompt Generator API",
        "version": "1.0.0",
        "providers": [p.value for p in ProviderName],
        "endpoints": {
            "batches": "/api/batches",
            "jobs": "/api/jobs?state=<state>",
            "progress": "/api/progress",
            "queue": "/api/queue",
            "models": "/api/models?provider=<provider>",
        }
    }


@app.post("/api/batches", status_code=202)
async def create_batch(
    batch: BatchCreate,
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
):
    """Start generating prompts for a batch of image URLs.

    The credential is taken from the request body, then the Authorization
    header, then the environment.
    """
    urls = [url.strip() for url in batch.urls if url.strip()]
    if not urls:
        raise HTTPException(status_code=400, detail="Please add at least one image URL")

    invalid = [url for url in urls if not is_valid_image_url(url)]
    if invalid:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid image URLs (jpg, jpeg, png, gif, webp, bmp): {', '.join(invalid)}"
        )

    api_key = batch.api_key or _bearer_token(authorization) or load_api_key(batch.provider)
    if not api_key:
        raise HTTPException(
            status_code=400,
            detail=f"Please set your {batch.provider.value} API key first"
        )

    model = batch.model or DEFAULT_MODELS[batch.provider]
    policy = batch.policy or policy_for(batch.free_tier)

    orchestrator = get_orchestrator()
    background_tasks.add_task(
        orchestrator.run_batch, urls, api_key, model, batch.provider, policy
    )

    logger.info(f"Accepted batch of {len(urls)} images for {batch.provider.value}/{model}")

    return {
        "accepted": len(urls),
        "provider": batch.provider.value,
        "model": model,
        "message": "Batch accepted"
    }


@app.get("/api/jobs")
async def get_jobs(state: Optional[JobState] = None):
    """Get jobs, optionally filtered by state.

    Args:
        state: Filter by state (pending, generating, retrying, completed, failed)
    """
    jobs = [
        job.model_dump()
        for job in get_orchestrator().jobs.values()
        if state is None or job.state == state
    ]
    return {"jobs": jobs, "count": len(jobs)}


@app.get("/api/progress", response_model=ProgressSnapshot)
async def get_progress():
    """Get the latest progress snapshot published by any batch."""
    return get_orchestrator().progress


@app.delete("/api/queue")
async def cancel_pending():
    """Cancel requests that have not been sent yet."""
    cleared = get_orchestrator().cancel_pending_requests()
    return {"cleared": cleared, "message": f"Cancelled {cleared} pending requests"}


@app.delete("/api/jobs")
async def clear_jobs(reference: Optional[str] = None):
    """Remove one job by reference, or all jobs when no reference is given."""
    orchestrator = get_orchestrator()
    if reference is None:
        orchestrator.clear()
        return {"message": "Cleared all jobs"}

    if orchestrator.remove(reference) is None:
        raise HTTPException(status_code=404, detail=f"No job for {reference}")
    return {"message": f"Removed {reference}"}


@app.get("/api/models")
async def get_models(
    provider: ProviderName = ProviderName.GEMINI,
    authorization: Optional[str] = Header(default=None),
):
    """List models available for a provider."""
    adapter = get_orchestrator().get_provider(provider)
    credential = _bearer_token(authorization) or load_api_key(provider)
    models = await adapter.list_models(credential)

    if provider == ProviderName.OPENROUTER:
        return {
            "provider": provider.value,
            "models": [
                {**m.model_dump(), "is_free": m.is_free}
                for m in models
            ],
        }
    return {"provider": provider.value, "models": models}


def main():
    """Run the API server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
