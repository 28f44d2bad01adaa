"""
Service de vérification biométrique

Orchestration complète de l'enregistrement et de la vérification:
preuve de vie, comparaison des descripteurs, anti-spoofing, seuil adaptatif
au risque, statistiques et verrouillage temporaire, audit.
"""
import base64
import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.exceptions import CryptoError, InternalError, LockedError, NotFoundError, ValidationError
from app.models.biometric import BiometricData
from app.models.security_log import LogType
from app.services.antispoofing_service import (
    HeuristicMotionAnalyzer, HeuristicTextureAnalyzer, MotionAnalyzer, TextureAnalyzer,
)
from app.services.audit_service import AuditService, audit_service
from app.services.auth_service import get_user_by_id
from app.services.challenge_service import LivenessResult
from app.services.descriptor_service import (
    CosineDescriptorScorer, DescriptorScorer, decode_descriptor, descriptor_quality, validate_descriptor,
)
from app.services.encryption_service import EncryptionService, get_encryption_service
from app.services.liveness_service import LivenessService, liveness_service, parse_liveness_proof
from app.services.risk_service import RiskScorer
from app.services.scoring import clamp

logger = logging.getLogger(__name__)

# Clés de métadonnées gérées exclusivement par le service
RESERVED_METADATA_KEYS = (
    "verification_stats",
    "security_flags",
    "liveness_verification",
    "registration_device",
    "quality_score",
    "antispoofing",
    "deactivated_at",
    "deactivated_reason",
    "deactivated_by",
)


@dataclass
class VerificationOutcome:
    verified: bool
    score: float
    face_match_score: float
    liveness_score: float
    security_score: float
    confidence: float
    method: str
    timestamp: datetime
    adjusted_threshold: float
    reasons: Optional[List[str]] = None
    details: Dict[str, Any] = field(default_factory=dict)


class BiometricService:
    """Service de vérification biométrique multi-facteurs"""

    METHOD = "multimodal-fusion-v1"

    def __init__(
        self,
        liveness: Optional[LivenessService] = None,
        scorer: Optional[DescriptorScorer] = None,
        texture_analyzer: Optional[TextureAnalyzer] = None,
        motion_analyzer: Optional[MotionAnalyzer] = None,
        risk_scorer: Optional[RiskScorer] = None,
        audit: Optional[AuditService] = None,
        encryption: Optional[EncryptionService] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.liveness = liveness or liveness_service
        self.scorer = scorer or CosineDescriptorScorer()
        self.texture_analyzer = texture_analyzer or HeuristicTextureAnalyzer()
        self.motion_analyzer = motion_analyzer or HeuristicMotionAnalyzer()
        self.risk_scorer = risk_scorer or RiskScorer()
        self.audit = audit or audit_service
        self._encryption = encryption
        self.clock = clock

        self.face_match_weight = settings.FACE_MATCH_WEIGHT
        self.liveness_weight = settings.LIVENESS_WEIGHT
        self.texture_weight = settings.TEXTURE_WEIGHT
        self.motion_weight = settings.MOTION_WEIGHT
        self.consistency_weight = settings.CONSISTENCY_WEIGHT
        self.match_threshold = settings.MATCH_THRESHOLD

        total = (
            self.face_match_weight + self.liveness_weight + self.texture_weight
            + self.motion_weight + self.consistency_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Les poids de fusion doivent totaliser 1.0 (reçu: {total:.3f})")
        if self.texture_weight + self.motion_weight + self.consistency_weight <= 0:
            raise ValueError("Les poids texture, mouvement et cohérence ne peuvent pas être tous nuls")

    @property
    def encryption(self) -> EncryptionService:
        return self._encryption or get_encryption_service()

    # ------------------------------------------------------------------
    # Enregistrement
    # ------------------------------------------------------------------

    async def register(
        self,
        db: AsyncSession,
        user_id: int,
        descriptor_data: str,
        type: str = "face",
        liveness_proof=None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> BiometricData:
        """
        Enregistrer un descripteur biométrique

        La preuve de vie et le descripteur sont validés avant toute écriture:
        un refus ne crée rien et laisse l'enregistrement précédent actif.

        Raises:
            NotFoundError: utilisateur inconnu
            ValidationError: preuve de vie refusée ou descripteur invalide
            InternalError: échec du chiffrement
        """
        async def fail(reason: str, message: str, extra: Optional[Dict[str, Any]] = None):
            await self.audit.record(
                LogType.ENROLLMENT_FAILED,
                user_id,
                details={"action": "biometric_registration", "success": False, "reason": reason, **(extra or {})},
                ip_address=ip_address,
                user_agent=user_agent,
                message=message,
            )

        user = await get_user_by_id(db, user_id)
        if user is None:
            await fail("user_not_found", "Utilisateur introuvable")
            raise NotFoundError(f"Utilisateur avec ID {user_id} introuvable")

        try:
            proof = parse_liveness_proof(liveness_proof)
        except ValidationError as e:
            await fail("invalid_liveness_proof", e.message)
            raise

        liveness = self.liveness.verify(proof)
        if not liveness.verified:
            await fail("liveness_failed", f"Enregistrement refusé: {liveness.reason}", {
                "liveness": _liveness_summary(liveness),
            })
            raise ValidationError(f"Vérification de vie échouée: {liveness.reason}")

        try:
            descriptor = decode_descriptor(descriptor_data)
        except ValidationError as e:
            await fail("invalid_descriptor", e.message)
            raise

        # Le JSON d'origine est chiffré tel quel pour un aller-retour exact
        raw_descriptor = base64.b64decode(descriptor_data)
        try:
            payload = self.encryption.encrypt(raw_descriptor)
        except CryptoError as e:
            logger.error(f"Erreur de chiffrement du descripteur: {e}", exc_info=True)
            await fail("encryption_failed", e.message)
            raise InternalError("Erreur lors du chiffrement des données biométriques")

        quality = descriptor_quality(descriptor)
        now = self.clock()

        # Un seul enregistrement actif par (utilisateur, type): désactiver sans supprimer
        previous = await self._get_active_records(db, user_id, type)
        for old in previous:
            self._deactivate(old, "re_registration", now, ip_address, user_agent)
        if previous:
            await db.flush()

        caller_metadata = {k: v for k, v in (metadata or {}).items() if k not in RESERVED_METADATA_KEYS}
        record = BiometricData(
            user_id=user_id,
            descriptor_data=payload.ciphertext,
            iv=payload.iv,
            auth_tag=payload.auth_tag,
            type=type,
            active=True,
            record_metadata={
                **caller_metadata,
                "liveness_verification": _liveness_summary(liveness),
                "registration_device": {
                    "ip_address": ip_address,
                    "user_agent": user_agent,
                    "timestamp": now.isoformat(),
                },
                "quality_score": quality,
                "antispoofing": {
                    "antispoofing_score": liveness.details.get("antispoofing_score"),
                    "time_validity": liveness.details.get("time_validity"),
                },
            },
        )
        db.add(record)
        await db.commit()

        await self.audit.record(
            LogType.ENROLLMENT_SUCCESS,
            user_id,
            target_id=record.id,
            details={
                "action": "biometric_registration",
                "success": True,
                "type": type,
                "quality_score": quality,
                "liveness_method": liveness.method,
                "replaced_records": [old.id for old in previous],
            },
            ip_address=ip_address,
            user_agent=user_agent,
            message=f"Enregistrement biométrique réussi (qualité: {quality:.2f})",
            liveness_score=liveness.score,
        )

        logger.info(f"Données biométriques enregistrées pour user_id={user_id} (type={type}, qualité={quality:.2f})")
        return record

    # ------------------------------------------------------------------
    # Vérification
    # ------------------------------------------------------------------

    async def verify(
        self,
        db: AsyncSession,
        user_id: int,
        descriptor_data: str,
        liveness_proof=None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        type: str = "face",
    ) -> VerificationOutcome:
        """
        Vérifier l'identité d'un utilisateur

        Un refus est un résultat (verified=False avec les raisons), pas une exception.

        Raises:
            NotFoundError: utilisateur ou données biométriques introuvables
            ValidationError: descripteur ou preuve de vie malformés
            InternalError: données stockées illisibles
        """
        async def fail(reason: str, message: str, target_id: Optional[int] = None):
            await self.audit.record(
                LogType.VERIFICATION_FAILED,
                user_id,
                target_id=target_id,
                details={"action": "biometric_verification", "success": False, "reason": reason},
                ip_address=ip_address,
                user_agent=user_agent,
                message=message,
            )

        user = await get_user_by_id(db, user_id)
        if user is None:
            await fail("user_not_found", "Utilisateur introuvable")
            raise NotFoundError(f"Utilisateur avec ID {user_id} introuvable")

        record = await self.get_active_record(db, user_id, type)
        if record is None:
            await fail("not_registered", "Aucune donnée biométrique enregistrée")
            raise NotFoundError("Aucune donnée biométrique enregistrée pour cet utilisateur")
        record_id = record.id

        try:
            proof = parse_liveness_proof(liveness_proof)
            submitted = decode_descriptor(descriptor_data)
        except ValidationError as e:
            await fail("invalid_input", e.message, record_id)
            raise

        # Calculée indépendamment du résultat de la comparaison
        liveness = self.liveness.verify(proof)

        try:
            stored = self._load_descriptor(record)
        except InternalError as e:
            await fail("stored_data_unreadable", e.message, record_id)
            raise

        similarity = self.scorer.similarity(submitted, stored)
        texture = self.texture_analyzer.analyze(
            proof.image_data if proof else None,
            proof.texture_data if proof else None,
        )
        motion = self.motion_analyzer.analyze(proof.motion_data if proof else None)

        consistency = self.consistency_score(
            similarity, liveness.score, texture.overall_score, motion.overall_score
        )
        final_score = self.fuse(similarity, liveness.score, texture.overall_score, motion.overall_score, consistency)

        now = self.clock()
        metadata = record.record_metadata or {}
        base_threshold = float(metadata.get("custom_match_threshold") or self.match_threshold)

        recent_failures = await self.audit.count_recent(
            db, user_id, LogType.VERIFICATION_FAILED,
            since=now - timedelta(minutes=settings.RISK_FAILURE_WINDOW_MINUTES),
        )
        ip_changed, user_agent_changed = _device_changes(metadata, ip_address, user_agent)
        risk_factor = self.risk_scorer.risk_factor(
            recent_failures, ip_changed, user_agent_changed, final_score, base_threshold
        )
        adjusted_threshold = self.risk_scorer.adjusted_threshold(base_threshold, risk_factor)

        # Les trois conditions sont obligatoires
        is_match = final_score >= adjusted_threshold and liveness.verified and texture.is_real_face

        reasons: List[str] = []
        if not is_match:
            if not liveness.verified:
                reasons.append("liveness_verification_failed")
            if final_score < adjusted_threshold or similarity < base_threshold:
                reasons.append("face_matching_failed")
            if not texture.is_real_face:
                reasons.append("texture_analysis_failed")

        scores = {
            "face_match_score": round(similarity, 4),
            "liveness_score": round(liveness.score, 4),
            "texture_score": round(texture.overall_score, 4),
            "motion_score": round(motion.overall_score, 4),
            "consistency_score": round(consistency, 4),
            "final_score": round(final_score, 4),
            "threshold": round(adjusted_threshold, 4),
            "risk_factor": risk_factor,
        }

        events = await self._persist_outcome(
            db, record, user_id, type, is_match, final_score, liveness.score, scores, reasons, now,
            ip_address, user_agent,
        )

        await self.audit.record(
            LogType.VERIFICATION_SUCCESS if is_match else LogType.VERIFICATION_FAILED,
            user_id,
            target_id=record_id,
            details={
                "action": "biometric_verification",
                "success": is_match,
                "scores": scores,
                "base_threshold": base_threshold,
                "recent_failures": recent_failures,
                "ip_changed": ip_changed,
                "user_agent_changed": user_agent_changed,
                "liveness": _liveness_summary(liveness),
                "texture": {"is_real_face": texture.is_real_face, "confidence": texture.confidence},
                "motion": {"is_natural_motion": motion.is_natural_motion, "confidence": motion.confidence},
                "reasons": reasons,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            message=f"Vérification biométrique: {'réussie' if is_match else 'échouée'}",
            face_score=similarity,
            liveness_score=liveness.score,
            combined_score=final_score,
        )
        await self._audit_security_events(events, user_id, record_id, scores, ip_address, user_agent)

        logger.info(
            f"Vérification user_id={user_id}: {'ACCEPTÉE' if is_match else 'REFUSÉE'} "
            f"(score={final_score:.4f}, seuil={adjusted_threshold:.4f}, risque={risk_factor:.2f})"
        )

        security_weight = self.texture_weight + self.motion_weight + self.consistency_weight
        return VerificationOutcome(
            verified=is_match,
            score=round(final_score, 4),
            face_match_score=round(similarity, 4),
            liveness_score=round(liveness.score, 4),
            security_score=round(
                (self.texture_weight * texture.overall_score
                 + self.motion_weight * motion.overall_score
                 + self.consistency_weight * consistency) / security_weight,
                4,
            ),
            confidence=round((liveness.confidence + texture.confidence + motion.confidence) / 3.0, 4),
            method=self.METHOD,
            timestamp=now,
            adjusted_threshold=round(adjusted_threshold, 4),
            reasons=None if is_match else reasons,
            details={"scores": scores, "liveness_method": liveness.method, "risk_factor": risk_factor},
        )

    def fuse(self, face_match: float, liveness: float, texture: float, motion: float, consistency: float) -> float:
        """Score final pondéré: l'identité pèse le plus, chaque signal faible pénalise"""
        return clamp(
            self.face_match_weight * face_match
            + self.liveness_weight * liveness
            + self.texture_weight * texture
            + self.motion_weight * motion
            + self.consistency_weight * consistency
        )

    @staticmethod
    def consistency_score(*signals: float) -> float:
        """Accord entre signaux: un candidat excellent sur l'un mais faible sur un autre est pénalisé"""
        return clamp(1.0 - (max(signals) - min(signals)))

    async def _persist_outcome(
        self,
        db: AsyncSession,
        record: BiometricData,
        user_id: int,
        type: str,
        is_match: bool,
        final_score: float,
        liveness_score: float,
        scores: Dict[str, Any],
        reasons: List[str],
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> Dict[str, bool]:
        """Mettre à jour statistiques et drapeaux avec verrou optimiste"""
        for attempt in range(1, settings.STATS_UPDATE_RETRIES + 1):
            events = self._apply_outcome(
                record, is_match, final_score, liveness_score, scores, reasons, now, ip_address, user_agent
            )
            try:
                await db.commit()
                return events
            except StaleDataError:
                await db.rollback()
                logger.warning(
                    f"Mise à jour concurrente des statistiques (user_id={user_id}, tentative {attempt})"
                )
                record = await self.get_active_record(db, user_id, type)
                if record is None:
                    raise NotFoundError("Les données biométriques ont été désactivées pendant la vérification")

        raise InternalError("Impossible de mettre à jour les statistiques de vérification")

    def _apply_outcome(
        self,
        record: BiometricData,
        is_match: bool,
        final_score: float,
        liveness_score: float,
        scores: Dict[str, Any],
        reasons: List[str],
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> Dict[str, bool]:
        metadata = copy.deepcopy(record.record_metadata or {})
        stats = metadata.setdefault("verification_stats", {})
        flags = dict(metadata.get("security_flags") or {})
        events = {"locked": False, "photo_attack": False}

        stats["last_scores"] = scores

        if is_match:
            record.last_verified_at = now
            stats["success_count"] = stats.get("success_count", 0) + 1
            stats["last_success"] = now.isoformat()
            stats["last_success_device"] = {"ip_address": ip_address, "user_agent": user_agent}
            # Le compteur repart à zéro; un verrou déjà posé n'est pas levé
            stats["failure_count"] = 0
        else:
            stats["failure_count"] = stats.get("failure_count", 0) + 1
            stats["total_failures"] = stats.get("total_failures", 0) + 1
            stats["last_failure"] = now.isoformat()
            stats["last_failure_details"] = {"reasons": reasons, **scores}

            if stats["failure_count"] >= settings.LOCKOUT_FAILURE_THRESHOLD:
                lock_until = now + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
                flags.update({
                    "multiple_failures": True,
                    "temporary_lock": True,
                    "lock_until": lock_until.isoformat(),
                    "flagged_at": now.isoformat(),
                })
                events["locked"] = True
                logger.warning(
                    f"ALERTE SÉCURITÉ: {stats['failure_count']} échecs consécutifs pour user_id={record.user_id}, "
                    f"verrouillage jusqu'à {lock_until.isoformat()}"
                )

            # Vivant mais très différent: photo d'une autre personne
            if final_score < settings.PHOTO_ATTACK_MAX_SCORE and liveness_score > settings.PHOTO_ATTACK_MIN_LIVENESS:
                flags.update({
                    "possible_spoofing_attempt": True,
                    "anomaly_type": "photo_attack",
                    "anomaly_detected_at": now.isoformat(),
                })
                events["photo_attack"] = True
                logger.warning(f"ALERTE SÉCURITÉ: possible attaque par photo pour user_id={record.user_id}")

        if flags:
            metadata["security_flags"] = flags
        record.record_metadata = metadata
        return events

    async def _audit_security_events(
        self,
        events: Dict[str, bool],
        user_id: int,
        record_id: int,
        scores: Dict[str, Any],
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        if events["locked"]:
            await self.audit.record(
                LogType.ACCOUNT_LOCKED,
                user_id,
                target_id=record_id,
                details={"action": "biometric_temporary_lock", "duration_minutes": settings.LOCKOUT_DURATION_MINUTES},
                ip_address=ip_address,
                user_agent=user_agent,
                message="Verrouillage temporaire après échecs répétés",
            )
        if events["photo_attack"]:
            await self.audit.record(
                LogType.ANOMALY_DETECTED,
                user_id,
                target_id=record_id,
                details={"action": "biometric_anomaly", "anomaly_type": "photo_attack", "scores": scores},
                ip_address=ip_address,
                user_agent=user_agent,
                message="Possible attaque par photo",
                combined_score=scores["final_score"],
            )

    def _load_descriptor(self, record: BiometricData) -> List[float]:
        try:
            raw = self.encryption.decrypt(record.descriptor_data, record.iv, record.auth_tag)
        except CryptoError as e:
            logger.error(f"Erreur de déchiffrement des données biométriques (id={record.id}): {e}", exc_info=True)
            raise InternalError("Erreur lors du déchiffrement des données biométriques stockées")

        try:
            descriptor = json.loads(raw.decode("utf-8"))
            validate_descriptor(descriptor)
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError):
            logger.error(f"Format invalide des données biométriques stockées (id={record.id})", exc_info=True)
            raise InternalError("Format invalide des données biométriques stockées")

        return [float(value) for value in descriptor]

    # ------------------------------------------------------------------
    # Preuve de vie seule, suppression, état, diagnostics
    # ------------------------------------------------------------------

    async def check_liveness(
        self,
        liveness_proof=None,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LivenessResult:
        """Vérification de vie autonome, sans comparaison de descripteurs"""
        try:
            proof = parse_liveness_proof(liveness_proof)
        except ValidationError as e:
            await self.audit.record(
                LogType.LIVENESS_CHECK,
                user_id,
                details={"action": "liveness_check", "verified": False, "reason": "invalid_liveness_proof"},
                ip_address=ip_address,
                user_agent=user_agent,
                message=f"Preuve de vie malformée: {e.message}",
            )
            raise

        result = self.liveness.verify(proof)

        await self.audit.record(
            LogType.LIVENESS_CHECK,
            user_id,
            details={"action": "liveness_check", **_liveness_summary(result)},
            ip_address=ip_address,
            user_agent=user_agent,
            message=f"Preuve de vie: {'validée' if result.verified else 'refusée'}",
            liveness_score=result.score,
        )
        return result

    async def remove_user_biometric_data(
        self,
        db: AsyncSession,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> int:
        """Désactiver (sans supprimer) les données biométriques d'un utilisateur"""
        records = await self._get_active_records(db, user_id)
        if not records:
            await self.audit.record(
                LogType.BIOMETRIC_DATA_REMOVED,
                user_id,
                details={"action": "biometric_data_removal", "count": 0, "ids": []},
                ip_address=ip_address,
                user_agent=user_agent,
                message="Aucune donnée biométrique active à désactiver",
            )
            return 0

        now = self.clock()
        for record in records:
            self._deactivate(record, "user_requested", now, ip_address, user_agent)
        await db.commit()

        await self.audit.record(
            LogType.BIOMETRIC_DATA_REMOVED,
            user_id,
            details={
                "action": "biometric_data_removal",
                "count": len(records),
                "ids": [record.id for record in records],
            },
            ip_address=ip_address,
            user_agent=user_agent,
            message="Données biométriques désactivées",
        )

        logger.info(f"Données biométriques désactivées pour user_id={user_id}")
        return len(records)

    async def get_user_biometric_status(self, db: AsyncSession, user_id: int) -> Dict[str, Any]:
        """État d'enregistrement biométrique d'un utilisateur"""
        result = await db.execute(
            select(BiometricData)
            .where(BiometricData.user_id == user_id, BiometricData.active.is_(True))
            .order_by(BiometricData.created_at.desc())
        )
        record = result.scalars().first()

        if record is None:
            return {"registered": False}

        return {
            "registered": True,
            "type": record.type,
            "last_verified": record.last_verified_at,
            "registration_date": record.created_at,
            "locked": self.is_locked(record),
            "lock_until": self.lock_until(record),
        }

    async def get_system_diagnostics(self, db: AsyncSession) -> Dict[str, Any]:
        """Diagnostics du système biométrique (administrateurs)"""
        now = self.clock()

        total = (await db.execute(select(func.count(BiometricData.id)))).scalar_one()
        type_counts = dict((await db.execute(
            select(BiometricData.type, func.count(BiometricData.id))
            .where(BiometricData.active.is_(True))
            .group_by(BiometricData.type)
        )).all())
        recent_verifications = (await db.execute(
            select(func.count(BiometricData.id)).where(
                BiometricData.last_verified_at.is_not(None),
                BiometricData.last_verified_at > now - timedelta(hours=24),
            )
        )).scalar_one()

        # Les drapeaux sont en JSON: filtrage côté Python, portable SQLite/PostgreSQL
        active_records = (await db.execute(
            select(BiometricData).where(BiometricData.active.is_(True))
        )).scalars().all()
        flagged = sum(
            1 for r in active_records
            if (r.record_metadata or {}).get("security_flags", {}).get("multiple_failures")
        )
        suspected_spoofing = sum(
            1 for r in active_records
            if (r.record_metadata or {}).get("security_flags", {}).get("possible_spoofing_attempt")
        )
        locked = sum(1 for r in active_records if self.is_locked(r, now))

        active = sum(type_counts.values())
        return {
            "total_registrations": total,
            "active_registrations": active,
            "inactive_registrations": total - active,
            "biometry_types": {
                "face": type_counts.get("face", 0),
                "fingerprint": type_counts.get("fingerprint", 0),
            },
            "security_metrics": {
                "users_with_failures": flagged,
                "possible_spoofing_attempts": suspected_spoofing,
                "locked_records": locked,
                "recent_verifications": recent_verifications,
            },
            "system_status": "operational",
            "timestamp": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Accès aux enregistrements
    # ------------------------------------------------------------------

    async def get_active_record(self, db: AsyncSession, user_id: int, type: str = "face") -> Optional[BiometricData]:
        result = await db.execute(
            select(BiometricData)
            .where(
                BiometricData.user_id == user_id,
                BiometricData.type == type,
                BiometricData.active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _get_active_records(self, db: AsyncSession, user_id: int, type: Optional[str] = None) -> List[BiometricData]:
        query = select(BiometricData).where(BiometricData.user_id == user_id, BiometricData.active.is_(True))
        if type is not None:
            query = query.where(BiometricData.type == type)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _deactivate(
        record: BiometricData,
        reason: str,
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        record.active = False
        record.record_metadata = {
            **(record.record_metadata or {}),
            "deactivated_at": now.isoformat(),
            "deactivated_reason": reason,
            "deactivated_by": {"ip_address": ip_address, "user_agent": user_agent},
        }

    async def ensure_not_locked(
        self,
        db: AsyncSession,
        user_id: int,
        type: str = "face",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """
        Refuser la tentative tant que le verrou temporaire est actif

        Le noyau ne fait que calculer le verrou; c'est au contrôleur de
        l'appliquer avant d'appeler verify().
        """
        record = await self.get_active_record(db, user_id, type)
        if record is None or not self.is_locked(record):
            return

        lock_until = self.lock_until(record)
        await self.audit.record(
            LogType.VERIFICATION_FAILED,
            user_id,
            target_id=record.id,
            details={
                "action": "biometric_verification",
                "success": False,
                "reason": "temporarily_locked",
                "lock_until": lock_until.isoformat(),
            },
            ip_address=ip_address,
            user_agent=user_agent,
            message="Tentative pendant le verrouillage temporaire",
        )
        raise LockedError(
            f"Vérification biométrique verrouillée jusqu'à {lock_until.isoformat()} après des échecs répétés"
        )

    @staticmethod
    def lock_until(record: BiometricData) -> Optional[datetime]:
        flags = (record.record_metadata or {}).get("security_flags") or {}
        if not flags.get("temporary_lock") or not flags.get("lock_until"):
            return None
        return datetime.fromisoformat(flags["lock_until"])

    def is_locked(self, record: BiometricData, now: Optional[datetime] = None) -> bool:
        """Le verrou est consultatif: expiré dès que lock_until est dépassé"""
        lock_until = self.lock_until(record)
        return lock_until is not None and lock_until > (now or self.clock())


def _liveness_summary(result: LivenessResult) -> Dict[str, Any]:
    return {
        "verified": result.verified,
        "score": result.score,
        "method": result.method,
        "confidence": result.confidence,
        "reason": result.reason,
        "details": result.details,
    }


def _device_changes(
    metadata: Dict[str, Any],
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> Tuple[bool, bool]:
    """Comparer avec le dernier appareil vérifié, à défaut celui de l'enregistrement"""
    stats = metadata.get("verification_stats") or {}
    reference = stats.get("last_success_device") or metadata.get("registration_device") or {}

    ip_changed = bool(ip_address and reference.get("ip_address") and ip_address != reference["ip_address"])
    user_agent_changed = bool(
        user_agent and reference.get("user_agent") and user_agent != reference["user_agent"]
    )
    return ip_changed, user_agent_changed


# Instance globale
biometric_service = BiometricService()
