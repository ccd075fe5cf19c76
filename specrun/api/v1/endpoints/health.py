from fastapi import APIRouter

from specrun import __version__

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "specrun", "version": __version__}
