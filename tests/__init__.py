"""
Contractor OS Test Suite
========================

Test organization:
- tests/unit/                        - Shared config, logging and error types
- tests/services/classification/     - Scoring engine, stores and batch runner

Run tests:
    pytest                                   # All tests
    pytest tests/unit                        # Unit tests only
    pytest tests/services/classification     # Classification engine only
"""
