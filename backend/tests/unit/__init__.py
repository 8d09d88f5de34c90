"""
Unit Tests

Unit tests run in isolation without external dependencies.
The database session, LLM provider, HTTP transport and browser are mocked.

These tests are fast and can run without Docker or any services running.
"""
