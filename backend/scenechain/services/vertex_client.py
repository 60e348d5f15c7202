"""Vertex AI client wrapper using google-genai SDK.

This module provides location-aware clients for Google Generative AI using Vertex AI mode.
Authentication is handled automatically via Application Default Credentials (ADC).

Usage:
    from scenechain.services.vertex_client import get_vertex_client

    client = get_vertex_client(cfg)                    # configured location
    client = get_vertex_client(cfg, location="global") # global endpoint
"""

import os
from typing import Optional

from dotenv import load_dotenv
from google import genai

from scenechain.config import GoogleCloudConfig

# Load .env for GOOGLE_APPLICATION_CREDENTIALS (ADC)
load_dotenv()

# Per-(project, location) client cache
_clients: dict[tuple[str, str], genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str, cfg: GoogleCloudConfig) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return cfg.location


def get_vertex_client(cfg: GoogleCloudConfig, location: Optional[str] = None) -> genai.Client:
    """Get or create a Vertex AI client for the given location.

    Clients are cached per project and location so repeated calls are cheap.

    Raises:
        ValueError: If no Google Cloud project is configured
    """
    if not cfg.project_id:
        raise ValueError(
            "google_cloud.project_id is not configured "
            "(set SCENECHAIN_GOOGLE_CLOUD__PROJECT_ID or config.yaml)"
        )
    loc = location or cfg.location
    key = (cfg.project_id, loc)

    if key not in _clients:
        os.environ["GOOGLE_GENAI_USE_VERTEXAI"] = "true"
        os.environ["GOOGLE_CLOUD_PROJECT"] = cfg.project_id

        _clients[key] = genai.Client(
            vertexai=True,
            project=cfg.project_id,
            location=loc,
        )

    return _clients[key]
