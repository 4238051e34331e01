"""Keyword-based pillar detection for knowledge-base documents."""

import re
from typing import Dict, List, Optional

PILLAR_KEYWORDS: Dict[str, List[str]] = {
    "fire_doors": ["fire door", "FD30", "FD60", "doorset", "ironmongery"],
    "dampers": ["fire damper", "smoke damper", "HVAC", "ductwork"],
    "fire_stopping": ["intumescent", "fire collar", "fire seal", "ablative", "penetration seal"],
    "retro_fire_stopping": ["retrospective", "cavity barrier", "retrofit"],
    "auro_lume": ["emergency lighting", "exit sign", "luminaire", "photoluminescent"],
}


def score_pillars(text: str) -> Dict[str, int]:
    """Count keyword occurrences per pillar (case-insensitive)."""
    lowered = text.lower()
    return {
        pillar: sum(len(re.findall(re.escape(keyword.lower()), lowered)) for keyword in keywords)
        for pillar, keywords in PILLAR_KEYWORDS.items()
    }


def detect_pillar(filename: str, content: str = "") -> Optional[str]:
    """
    Guess a document's pillar from its filename and text.

    Returns:
        The pillar with the most keyword hits; ties go to the pillar listed
        first. None when nothing matches.
    """
    scores = score_pillars(f"{filename} {content}")
    best_pillar, best_score = None, 0
    for pillar, score in scores.items():
        if score > best_score:
            best_pillar, best_score = pillar, score
    return best_pillar
