"""
Integration tests against a real PostgreSQL.

Run with:
    TEST_DATABASE_URL=postgresql://... pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
