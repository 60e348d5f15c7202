"""API server entry point for python -m scenechain.api"""
import uvicorn
from scenechain.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "scenechain.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
