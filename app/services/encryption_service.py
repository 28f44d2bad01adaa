"""
Service de chiffrement AES-256-GCM pour les données biométriques
Chaque chiffrement produit un IV aléatoire et un tag d'authentification stockés
à côté du texte chiffré.
"""
from dataclasses import dataclass
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import os
import logging

from app.exceptions import CryptoError

logger = logging.getLogger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass
class EncryptedPayload:
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes


class EncryptionService:
    """
    Service de chiffrement/déchiffrement pour les données biométriques
    Utilise AES-256-GCM (chiffrement authentifié)
    """

    def __init__(self, encryption_key: str = None):
        """
        Initialise le service avec une clé de chiffrement

        Args:
            encryption_key: Clé de chiffrement (string). Si None, clé par défaut.
        """
        if not encryption_key:
            logger.warning("Aucune clé de chiffrement fournie - utilisation d'une clé par défaut (NON SÉCURISÉ)")
            encryption_key = "default-encryption-key-change-this"
        self._aesgcm = AESGCM(self._derive_key(encryption_key))

    def _derive_key(self, key: str) -> bytes:
        """
        Dérive une clé de 32 bytes avec PBKDF2
        """
        # Sel fixe pour la dérivation (pourrait être stocké séparément)
        salt = b'biometrie_salt_v1'

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return kdf.derive(key.encode())

    def encrypt(self, data: bytes) -> EncryptedPayload:
        """
        Chiffre des données binaires

        Returns:
            EncryptedPayload (texte chiffré, IV, tag d'authentification)
        """
        if data is None:
            raise CryptoError("Aucune donnée à chiffrer")

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, data, None)
        # AESGCM concatène le tag à la fin du texte chiffré
        payload = EncryptedPayload(ciphertext=sealed[:-TAG_LENGTH], iv=iv, auth_tag=sealed[-TAG_LENGTH:])
        logger.debug(f"Données chiffrées: {len(data)} bytes -> {len(payload.ciphertext)} bytes")
        return payload

    def decrypt(self, ciphertext: bytes, iv: bytes, auth_tag: bytes) -> bytes:
        """
        Déchiffre des données chiffrées

        Raises:
            CryptoError: tag invalide (clé incorrecte ou données altérées)
        """
        if ciphertext is None or iv is None or auth_tag is None:
            raise CryptoError("Données chiffrées incomplètes")

        try:
            decrypted = self._aesgcm.decrypt(iv, ciphertext + auth_tag, None)
        except InvalidTag:
            logger.error("Échec du déchiffrement: tag invalide (clé incorrecte ou données corrompues)")
            raise CryptoError("Impossible de déchiffrer les données biométriques. Clé incorrecte ou données corrompues.")
        except ValueError as e:
            logger.error(f"Erreur lors du déchiffrement: {e}")
            raise CryptoError(f"Paramètres de déchiffrement invalides: {e}")

        logger.debug(f"Données déchiffrées: {len(ciphertext)} bytes -> {len(decrypted)} bytes")
        return decrypted


# Instance globale - sera initialisée avec la clé de config
encryption_service = None


def get_encryption_service():
    """
    Retourne l'instance du service de chiffrement
    Lazy initialization pour attendre que la config soit chargée
    """
    global encryption_service

    if encryption_service is None:
        from app.config import settings
        encryption_service = EncryptionService(settings.BIOMETRIC_ENCRYPTION_KEY)

    return encryption_service
