"""Image proxy endpoint.

GET /api/img2img/image/{key} serves stored task images from the blob store,
so the store itself never has to be publicly reachable. Only keys under
image-tasks/ are served.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from img2img.api.dependencies import get_storage
from img2img.services.exceptions import StorageError, StorageNotFoundError
from img2img.services.storage.base import StorageProvider

logger = structlog.get_logger()
router = APIRouter(prefix="/api/img2img", tags=["images"])

ALLOWED_PREFIX = "image-tasks/"


@router.get("/image/{key:path}")
async def get_image(key: str, storage: StorageProvider = Depends(get_storage)) -> Response:
    """Stream a stored image.

    Raises:
        HTTPException 400: Empty key
        HTTPException 403: Key outside image-tasks/
        HTTPException 404: No image stored under key
        HTTPException 500: Storage failure
    """
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing storage key")

    if not key.startswith(ALLOWED_PREFIX):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid storage path")

    try:
        stored = await storage.get_file(key)
    except StorageNotFoundError:
        logger.info("image_proxy.not_found", key=key)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    except StorageError as e:
        logger.warning("image_proxy.invalid_key", key=key, error=str(e))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid storage path")
    except Exception as e:
        logger.error("image_proxy.failed", key=key, error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve image",
        )

    return Response(
        content=stored.data,
        media_type=stored.content_type,
        headers={
            "Cache-Control": "private, max-age=3600",
            "X-Content-Type-Options": "nosniff",
        },
    )
