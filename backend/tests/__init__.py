"""
Test Suite

Structure:
    tests/
    ├── conftest.py         # Environment defaults and in-memory fakes
    ├── unit/               # Engine, services and utilities
    └── integration/        # API endpoints through TestClient

To run tests:
    pytest backend/tests
    pytest backend/tests/unit
    pytest backend/tests/integration
"""
