"""HTTP surface for the Cruso scheduling core.

Provides a FastAPI application exposing:
- The inbound email webhook that feeds the engagement dispatcher
- Availability checks, slot suggestions and create-availability
- A health endpoint
"""

from cruso.web.app import create_app

__all__ = ["create_app"]
