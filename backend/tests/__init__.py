"""
pytest test suite for the storefront order service.

Test categories:
- Unit tests: codecs, builders, validators, models
- Integration tests: services against in-memory (or file) SQLite
- API tests: full FastAPI app over httpx ASGITransport
"""
