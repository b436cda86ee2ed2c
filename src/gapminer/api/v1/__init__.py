# API v1 router aggregation.
# Created: 2026-10-14
#
# mount_v1_routers(app) registers all domain routers at /api/v1/.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 domain routers on *app* at ``/api/v1``."""
    from gapminer.api.v1.api_keys import router as api_keys_router
    from gapminer.api.v1.auth import router as auth_router

    for router in (auth_router, api_keys_router):
        app.include_router(router, prefix="/api/v1")
        logger.debug("Mounted v1 router: %s", router.tags)
