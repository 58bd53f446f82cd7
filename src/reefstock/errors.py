from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog pipeline failures."""


class InputFormatError(CatalogError):
    """The file could not be read as delimited text (extension, encoding, CSV syntax)."""


class EmptyInputError(InputFormatError):
    """The file holds no data array at all."""


class NoValidDataError(CatalogError):
    """The file parsed but produced no item records."""


class StorageError(CatalogError):
    """The stored-state backend failed to read or write."""


class ImageError(CatalogError):
    """An image payload was rejected or could not be fetched."""
