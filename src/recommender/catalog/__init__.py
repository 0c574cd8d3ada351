from recommender.catalog.tmdb import (
    CatalogClient,
    CatalogConfig,
    CatalogDisabledError,
    MovieMatch,
    ShowMatch,
)

__all__ = [
    "CatalogClient",
    "CatalogConfig",
    "CatalogDisabledError",
    "MovieMatch",
    "ShowMatch",
]
