from fastapi import APIRouter

from app.core.config import settings
from app.services.search.vector_index import vector_index_client

router = APIRouter()

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "environment": settings.ENVIRONMENT,
        "llmProvider": settings.LLM_PROVIDER,
        "vectorIndexConfigured": vector_index_client.configured,
    }

@router.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}
