"""
Fallback care recommendations.

Used when the identification provider returns no treatment guidance for a
disease. Rules are checked top to bottom against the lowercased disease name
and the first match wins.
"""
from typing import Callable, List, Tuple


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda name: any(needle in name for needle in needles)


HEALTHY_TIPS = (
    "Plant appears healthy. Maintain current care routine.",
    "Water when the top inch of soil is dry and ensure proper drainage.",
    "Provide adequate sunlight and monitor regularly.",
)

GENERAL_TIPS = (
    "Ensure proper sunlight for species; avoid waterlogging.",
    "Sanitize tools and remove plant debris around the base.",
)

RULES: Tuple[Tuple[Callable[[str], bool], Tuple[str, ...]], ...] = (
    (_contains("mildew", "powdery"), (
        "Improve air circulation and avoid overhead watering.",
        "Prune crowded foliage; apply neem oil or potassium bicarbonate spray.",
        "Remove heavily infected leaves.",
    )),
    (_contains("leaf spot", "spot", "blight"), (
        "Remove and dispose of infected leaves to reduce spread.",
        "Water at the base; avoid wetting foliage.",
        "Consider a copper-based fungicide if symptoms persist.",
    )),
    (_contains("rust"), (
        "Remove infected leaves and increase spacing for airflow.",
        "Apply sulfur or copper-based fungicide as directed.",
    )),
    (_contains("mosaic", "virus"), (
        "Isolate the plant; disinfect tools.",
        "Control insect vectors (e.g., aphids).",
        "Remove severely affected plants if spread is likely.",
    )),
)

DEFAULT_TIPS = (
    "Isolate affected plant to prevent spread.",
    "Remove visibly affected parts and improve growing conditions.",
    "Monitor progression and apply targeted treatment if identified.",
)


def is_healthy_name(name: str) -> bool:
    return not name or "healthy" in name or "no disease" in name


def generate_recommendations(disease_name: str) -> List[str]:
    """Return 3-5 care tips for *disease_name*. Total and deterministic."""
    name = (disease_name or "").lower()

    if is_healthy_name(name):
        return list(HEALTHY_TIPS)

    tips = DEFAULT_TIPS
    for matches, rule_tips in RULES:
        if matches(name):
            tips = rule_tips
            break

    return list(tips) + list(GENERAL_TIPS)
