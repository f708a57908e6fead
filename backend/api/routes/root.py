"""
Root and health check endpoints
"""

from fastapi import APIRouter

router = APIRouter(tags=["root"])

@router.get("/")
async def root():
    """API root endpoint - returns API information"""
    return {
        "name": "RAG Optimizer API",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "evaluation": "/api/v1/evaluation",
            "experiments": "/api/v1/experiments",
            "budget": "/api/v1/budget",
            "optimization": "/api/v1/optimization",
        }
    }
