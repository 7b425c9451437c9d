"""
Per-kind instructions and payload shapes for provider calls.

Only the response contract lives here; the wording is deliberately minimal.
"""

from typing import Dict, Optional, Tuple

from cognitive_profiler.models.contracts import AnalysisKind

REQUIRED_KEYS: Dict[AnalysisKind, Tuple[str, ...]] = {
    AnalysisKind.COGNITIVE: (
        "intelligence_score",
        "characteristics",
        "detailed_analysis",
        "strengths",
        "tendencies",
    ),
    AnalysisKind.PSYCHOLOGICAL: (
        "emotional_profile",
        "motivational_structure",
        "interpersonal_dynamics",
        "strengths",
        "challenges",
        "overall_summary",
    ),
    AnalysisKind.COMPREHENSIVE_REPORT: (
        "summary",
        "intelligence_score",
        "cognitive_dimensions",
        "detailed_analysis",
        "recommendations",
    ),
    AnalysisKind.COMPREHENSIVE_PSYCHOLOGICAL_REPORT: (
        "summary",
        "personality_overview",
        "emotional_patterns",
        "interpersonal_style",
        "detailed_analysis",
        "recommendations",
    ),
}

_SUBJECT = {
    AnalysisKind.COGNITIVE: "a cognitive profile of the author",
    AnalysisKind.PSYCHOLOGICAL: "a psychological profile of the author",
    AnalysisKind.COMPREHENSIVE_REPORT: "a comprehensive cognitive report on the author",
    AnalysisKind.COMPREHENSIVE_PSYCHOLOGICAL_REPORT: "a comprehensive psychological report on the author",
}


def system_prompt(kind: AnalysisKind) -> str:
    keys = ", ".join(f'"{key}"' for key in REQUIRED_KEYS[kind])
    return (
        f"You analyze writing samples. Produce {_SUBJECT[kind]} based only on the text. "
        f"Respond with a single JSON object containing exactly these keys: {keys}. "
        "Scores are integers from 1 to 100; list fields are arrays of short strings."
    )


def user_prompt(text: str, context: Optional[str] = None) -> str:
    if context:
        return f"Additional context: {context}\n\nText to analyze:\n\n{text}"
    return f"Text to analyze:\n\n{text}"
