"""
Calcul du facteur de risque et du seuil adaptatif
"""
from typing import Optional

from app.config import settings
from app.services.scoring import clamp


class RiskScorer:
    """
    Facteur de risque dans [0, 1] à partir de:
    - nombre d'échecs récents pour (utilisateur, action)
    - changement d'IP / d'user-agent par rapport au dernier succès
    - score candidat proche du seuil

    Le seuil ajusté n'est jamais inférieur au seuil de base.
    """

    FAILURE_WEIGHT = 0.5
    IP_CHANGE_WEIGHT = 0.2
    USER_AGENT_CHANGE_WEIGHT = 0.1
    BORDERLINE_WEIGHT = 0.2

    def __init__(
        self,
        sensitivity: Optional[float] = None,
        failure_saturation: Optional[int] = None,
        borderline_margin: Optional[float] = None,
    ):
        self.sensitivity = settings.RISK_SENSITIVITY if sensitivity is None else sensitivity
        self.failure_saturation = (
            settings.RISK_FAILURE_SATURATION if failure_saturation is None else failure_saturation
        )
        self.borderline_margin = (
            settings.RISK_BORDERLINE_MARGIN if borderline_margin is None else borderline_margin
        )

    def risk_factor(
        self,
        recent_failures: int,
        ip_changed: bool = False,
        user_agent_changed: bool = False,
        candidate_score: Optional[float] = None,
        base_threshold: Optional[float] = None,
    ) -> float:
        risk = self.FAILURE_WEIGHT * min(1.0, max(0, recent_failures) / self.failure_saturation)
        if ip_changed:
            risk += self.IP_CHANGE_WEIGHT
        if user_agent_changed:
            risk += self.USER_AGENT_CHANGE_WEIGHT
        if (
            candidate_score is not None
            and base_threshold is not None
            and abs(candidate_score - base_threshold) < self.borderline_margin
        ):
            risk += self.BORDERLINE_WEIGHT
        return round(clamp(risk), 4)

    def adjusted_threshold(self, base_threshold: float, risk_factor: float) -> float:
        """seuil = base * (1 + risque * K)"""
        return base_threshold * (1.0 + clamp(risk_factor) * self.sensitivity)
