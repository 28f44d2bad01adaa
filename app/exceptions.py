"""
Exceptions du noyau biométrique

Les refus de vérification ne sont pas des exceptions : un échec de
correspondance est un résultat normal (VerificationOutcome.verified = False).
"""


class BiometricError(Exception):
    """Erreur de base du service biométrique"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BiometricError):
    """Entrée invalide ou incomplète (corrigible par l'appelant)"""
    status_code = 400


class NotFoundError(BiometricError):
    """Utilisateur ou données biométriques introuvables"""
    status_code = 404


class CryptoError(BiometricError):
    """Échec de chiffrement/déchiffrement (clé incorrecte ou données altérées)"""
    status_code = 500


class InternalError(BiometricError):
    """Données corrompues ou état incohérent, non corrigible par l'appelant"""
    status_code = 500


class LockedError(BiometricError):
    """Enregistrement temporairement verrouillé après échecs répétés"""
    status_code = 423
