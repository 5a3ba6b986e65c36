"""Static pages of the control front-end."""

import logging
import os

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

logger = logging.getLogger(__name__)

# route -> file in the frontend directory
PAGES = {
    "/": "index.html",            # login
    "/menu": "menu.html",
    "/controle": "manual.html",   # manual control
    "/manutencao": "manutencao.html",
}


def register_pages(app: FastAPI, frontend_dir: str) -> bool:
    """
    Serve the front-end pages and assets from frontend_dir.

    Must be called after every other route is registered, the static
    mount catches all remaining paths.

    Returns:
        False if the directory does not exist
    """
    if not os.path.isdir(frontend_dir):
        logger.warning(f"Frontend directory {frontend_dir} not found, static pages disabled")
        return False

    for route, filename in PAGES.items():
        app.add_api_route(
            route,
            _page(os.path.join(frontend_dir, filename)),
            methods=["GET"],
            include_in_schema=False,
        )

    app.mount("/", StaticFiles(directory=frontend_dir), name="frontend")
    logger.info(f"Serving frontend from {frontend_dir}")
    return True


def _page(path: str):
    async def page():
        return FileResponse(path)
    return page
