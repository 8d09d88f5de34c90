"""
Domain Ingestion Test Suite

Test Structure:
    tests/
    ├── conftest.py                   # Shared fixtures and builders
    └── unit/                         # Unit tests (isolated, no external dependencies)
        ├── test_config.py            # Settings and YAML loading
        ├── test_scoring.py           # Relevance scoring
        ├── test_source_adapters.py   # Source adapters (httpx mocked)
        ├── test_ingestion_pipeline.py  # Orchestrator end to end
        └── test_ingestion_api.py     # HTTP API through TestClient

Running Tests:
    # Run all tests
    pytest backend/tests/ -v

    # Run with coverage
    pytest backend/tests/ --cov=app --cov-report=html
"""
