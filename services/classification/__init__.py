"""
Classification Service
======================

Worker-classification risk scoring for contractors.

Features:
- Append-only factor store with manual and derived observations
- IRS common-law, DOL economic-realities and ABC test scoring
- Risk classification (low/medium/high/critical)
- Immutable assessment history
- Atomically published dashboard summary
- Scheduled batch reassessment
"""

__version__ = "0.1.0"
