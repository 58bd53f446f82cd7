"""
Reef inventory catalog library.

This package provides modular building blocks for:
- Parsing supplier inventory exports (CSV/TXT) into catalog records
- Name normalization and search keys
- Markup and manual-override pricing
- Assembling the grouped storefront view
- Persisting catalog state in SQLite

Public API:
- ingest.parse_catalog_text, ingest.parse_catalog_file
- normalize.normalize_name, normalize.clean_item_name, normalize.search_key
- pricing.compute_sale_price, pricing.select_markup_rule, pricing.apply_pricing
- assemble.assemble_catalog, assemble.group_by_category, assemble.catalog_stats
- store.CatalogStore
- pipeline.run_import, pipeline.load_catalog, pipeline.export_catalog
"""

from . import assemble, images, ingest, io, mapping, normalize, pipeline, pricing, store  # re-export modules
from .errors import (
    CatalogError,
    EmptyInputError,
    ImageError,
    InputFormatError,
    NoValidDataError,
    StorageError,
)

__version__ = "0.1.0"

__all__ = [
    "assemble",
    "images",
    "ingest",
    "io",
    "mapping",
    "normalize",
    "pipeline",
    "pricing",
    "store",
    "CatalogError",
    "EmptyInputError",
    "ImageError",
    "InputFormatError",
    "NoValidDataError",
    "StorageError",
]
