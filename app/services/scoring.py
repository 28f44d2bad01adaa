"""
Fonctions utilitaires de notation partagées par les vérificateurs
"""
from typing import Sequence, Tuple


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return float(min(max(value, low), high))


def band_score(value: float, low: float, high: float) -> float:
    """
    Plausibilité d'une mesure par rapport à une plage naturelle [low, high]

    1.0 dans la plage, décroissance linéaire vers 0 en dessous (0 à value=0)
    et au-dessus (0 à value=2*high).
    """
    if low <= value <= high:
        return 1.0
    if value < low:
        return clamp(value / low) if low > 0 else 0.0
    if high <= 0:
        return 0.0
    return clamp(1.0 - (value - high) / high)


def weighted_score(components: Sequence[Tuple[float, float]]) -> float:
    """Somme pondérée de (score, poids), bornée à [0, 1]"""
    return clamp(sum(score * weight for score, weight in components))
