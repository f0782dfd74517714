"""
Contractor OS Services
======================

Services:
- classification: Worker-classification risk scoring
"""

__all__ = [
    "classification",
]
