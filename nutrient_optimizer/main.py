"""
FastAPI application factory.

The catalog provider and profile library are built here and stored on
app.state; routers receive them through dependencies. The salt catalog is
read from the built-in JSON library unless NUTRIENT_OPTIMIZER_CATALOG_SOURCE
is "database", in which case it is read from (and editable in) the salts
table.
"""
from typing import Optional
import logging
import os

from fastapi import FastAPI

from nutrient_optimizer import __version__
from nutrient_optimizer.database import SessionLocal, init_db
from nutrient_optimizer.routers import nutrient_solver
from nutrient_optimizer.services.catalog_provider import (
    JsonSaltLoader,
    PlantProfileLibrary,
    SaltCatalogProvider,
)
from nutrient_optimizer.services.salt_repository import repository_loader

logger = logging.getLogger(__name__)

CATALOG_SOURCES = ("json", "database")
CATALOG_SOURCE = os.environ.get("NUTRIENT_OPTIMIZER_CATALOG_SOURCE", "json")


def create_app(
    catalog_provider: Optional[SaltCatalogProvider] = None,
    profile_library: Optional[PlantProfileLibrary] = None,
    catalog_source: str = CATALOG_SOURCE,
) -> FastAPI:
    if catalog_source not in CATALOG_SOURCES:
        raise ValueError(f"Unknown catalog source '{catalog_source}', expected one of {CATALOG_SOURCES}")

    app = FastAPI(title="Nutrient Optimizer", version=__version__)
    if catalog_provider is None:
        if catalog_source == "database":
            init_db()
            catalog_provider = SaltCatalogProvider(repository_loader(SessionLocal))
        else:
            catalog_provider = SaltCatalogProvider(JsonSaltLoader())
    logger.info(f"Salt catalog source: {catalog_source}")

    app.state.catalog_source = catalog_source
    app.state.catalog_provider = catalog_provider
    app.state.profile_library = profile_library or PlantProfileLibrary()
    app.include_router(nutrient_solver.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__, "catalog_source": catalog_source}

    return app


app = create_app()
