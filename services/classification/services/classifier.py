"""
Risk Classifier
===============

Maps an overall score in [0, 100] to exactly one risk level.

Bands (lower bound inclusive):
- LOW:      0  <= score < 25   (integer scores 0-24)
- MEDIUM:   25 <= score < 50   (25-49)
- HIGH:     50 <= score < 75   (50-74)
- CRITICAL: 75 <= score <= 100 (75-100)

Fractional scores between integer bands (e.g. 24.5) fall in the lower band.

Version: 0.1.0
"""

import math

from services.classification.models import RiskLevel


MIN_SCORE = 0.0
MAX_SCORE = 100.0

# (level, lower bound inclusive), ascending
RISK_BANDS: tuple[tuple[RiskLevel, float], ...] = (
    (RiskLevel.LOW, 0.0),
    (RiskLevel.MEDIUM, 25.0),
    (RiskLevel.HIGH, 50.0),
    (RiskLevel.CRITICAL, 75.0),
)

if {level for level, _ in RISK_BANDS} != set(RiskLevel):
    raise RuntimeError("RISK_BANDS must assign a band to every RiskLevel")

if RISK_BANDS[0][1] != MIN_SCORE or any(
    lower >= upper for (_, lower), (_, upper) in zip(RISK_BANDS, RISK_BANDS[1:])
):
    raise RuntimeError("RISK_BANDS must start at 0 and be strictly ascending")


def classify(score: float) -> RiskLevel:
    """
    Classify an overall score.

    Args:
        score: Overall score in [0, 100]

    Returns:
        The risk level whose band contains the score

    Raises:
        ValueError: If the score is NaN or outside [0, 100]
    """
    if math.isnan(score) or score < MIN_SCORE or score > MAX_SCORE:
        raise ValueError(f"score must be within [0, 100], got {score}")

    level = RISK_BANDS[0][0]
    for band_level, lower in RISK_BANDS:
        if score >= lower:
            level = band_level
    return level
