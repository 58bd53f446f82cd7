"""HTTP API over the reefstock catalog. Run with ``uvicorn storefront.app:app``."""
