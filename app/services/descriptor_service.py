"""
Service des descripteurs faciaux

- Décodage/encodage: tableau JSON de nombres, encodé en base64
- Similarité cosinus normalisée dans [0, 1]
- Score de qualité d'un descripteur à l'enregistrement
"""
import base64
import binascii
import json
import math
from typing import List, Optional, Protocol, Sequence

import numpy as np

from app.config import settings
from app.exceptions import ValidationError
from app.services.scoring import band_score, clamp


def decode_descriptor(descriptor_data: str, expected_length: Optional[int] = None) -> List[float]:
    """
    Décoder un descripteur base64 -> liste de flottants validée

    Raises:
        ValidationError: base64/JSON invalide, mauvaise dimension ou valeurs non numériques
    """
    if not descriptor_data:
        raise ValidationError("Les données biométriques sont requises")

    try:
        raw = base64.b64decode(descriptor_data, validate=True)
        descriptor = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Erreur de décodage des données biométriques: {e}")

    validate_descriptor(descriptor, expected_length)
    return [float(value) for value in descriptor]


def encode_descriptor(descriptor: Sequence[float]) -> str:
    """Inverse de decode_descriptor"""
    return base64.b64encode(json.dumps(list(descriptor)).encode("utf-8")).decode("ascii")


def validate_descriptor(descriptor, expected_length: Optional[int] = None) -> None:
    """Valider la forme d'un descripteur facial"""
    if expected_length is None:
        expected_length = settings.DESCRIPTOR_LENGTH

    if not isinstance(descriptor, list):
        raise ValidationError("Le descripteur facial doit être un tableau")

    if len(descriptor) != expected_length:
        raise ValidationError(
            f"Le descripteur facial doit avoir {expected_length} dimensions (reçu: {len(descriptor)})"
        )

    for value in descriptor:
        # bool est un sous-type de int
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError("Le descripteur facial contient des valeurs invalides")


class DescriptorScorer(Protocol):
    """Stratégie de comparaison de descripteurs (remplaçable par un modèle)"""

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        ...


class CosineDescriptorScorer:
    """
    Similarité cosinus ramenée dans [0, 1]

    Args:
        allow_negative: si True, le cosinus [-1, 1] est projeté linéairement sur
            [0, 1] (0.5 = orthogonal); sinon un cosinus négatif vaut 0.
    """

    def __init__(self, allow_negative: bool = False):
        self.allow_negative = allow_negative

    def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        if len(a) == 0 or len(b) == 0:
            raise ValidationError("Les descripteurs faciaux ne peuvent pas être vides")
        if len(a) != len(b):
            raise ValidationError("Les descripteurs faciaux n'ont pas la même dimension")

        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)

        norms = float(np.dot(va, va)) * float(np.dot(vb, vb))
        if norms == 0.0:
            return 0.0

        cosine = float(np.dot(va, vb)) / math.sqrt(norms)

        if self.allow_negative:
            return clamp((cosine + 1.0) / 2.0)
        return clamp(cosine)


def descriptor_quality(descriptor: Sequence[float]) -> float:
    """
    Estimer la qualité d'un descripteur (heuristique déterministe)

    Un descripteur exploitable a peu de composantes nulles, une dispersion
    non dégénérée et une norme plausible.
    """
    values = np.asarray(descriptor, dtype=np.float64)
    if values.size == 0:
        return 0.0

    nonzero_fraction = float(np.count_nonzero(values)) / values.size
    spread = clamp(float(np.std(values)) / 0.05)
    norm = band_score(float(np.linalg.norm(values)), 0.3, 2.0)

    return round(clamp(0.4 * nonzero_fraction + 0.3 * spread + 0.3 * norm), 4)
