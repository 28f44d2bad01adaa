"""
Schémas Pydantic pour les preuves de vie

Une preuve de vie est une union étiquetée par `challenge`: chaque variante ne
porte que la télémétrie de son défi, plus une enveloppe commune (image,
mouvement, texture) utilisée par l'anti-spoofing.
"""
from pydantic import BaseModel, Field, Discriminator, Tag, TypeAdapter
from typing import Annotated, Any, List, Literal, Optional, Union


class MotionSample(BaseModel):
    """Échantillon de position/accélération (capteur ou repères faciaux)"""
    x: float
    y: float
    z: float = 0.0
    t: Optional[float] = None  # ms


class MotionData(BaseModel):
    samples: List[MotionSample] = []


class TextureData(BaseModel):
    """Mesures de texture calculées côté client"""
    moire_score: Optional[float] = Field(default=None, ge=0, le=1)
    specular_reflection: Optional[float] = Field(default=None, ge=0, le=1)
    depth_variance: Optional[float] = Field(default=None, ge=0)


class LivenessProofBase(BaseModel):
    """Enveloppe commune à tous les défis"""
    timestamp: Optional[float] = None  # epoch en millisecondes
    image_data: Optional[str] = None  # base64, préfixe data:image accepté
    motion_data: Optional[MotionData] = None
    texture_data: Optional[TextureData] = None


# Blink

class EyeFrame(BaseModel):
    state: Literal["open", "closed", "partial"]
    ear: Optional[float] = Field(default=None, ge=0)  # eye aspect ratio
    t: Optional[float] = None


class BlinkMetrics(BaseModel):
    ear_open: float = Field(ge=0)
    ear_closed: float = Field(ge=0)
    blink_duration_ms: float = Field(ge=0)
    closing_speed_ms: float = Field(ge=0)


class BlinkProof(LivenessProofBase):
    challenge: Literal["blink"] = "blink"
    eye_state_sequence: Optional[List[EyeFrame]] = None
    blink_metrics: Optional[BlinkMetrics] = None


# Smile

class ExpressionFrame(BaseModel):
    smile_probability: float = Field(ge=0, le=1)
    t: Optional[float] = None


class SmileMetrics(BaseModel):
    neutral_probability: float = Field(ge=0, le=1)
    peak_probability: float = Field(ge=0, le=1)
    duration_ms: float = Field(ge=0)
    mouth_width_ratio: Optional[float] = Field(default=None, ge=0)


class SmileProof(LivenessProofBase):
    challenge: Literal["smile"] = "smile"
    expression_sequence: Optional[List[ExpressionFrame]] = None
    smile_metrics: Optional[SmileMetrics] = None


# Head-turn / nod

class HeadPoseFrame(BaseModel):
    yaw: float = 0.0  # degrés
    pitch: float = 0.0
    roll: float = 0.0
    t: Optional[float] = None


class HeadTurnMetrics(BaseModel):
    max_yaw: float
    min_yaw: float
    duration_ms: float = Field(ge=0)


class NodMetrics(BaseModel):
    max_pitch: float
    min_pitch: float
    duration_ms: float = Field(ge=0)


class HeadTurnProof(LivenessProofBase):
    challenge: Literal["head-turn"] = "head-turn"
    head_pose_sequence: Optional[List[HeadPoseFrame]] = None
    head_turn_metrics: Optional[HeadTurnMetrics] = None


class NodProof(LivenessProofBase):
    challenge: Literal["nod"] = "nod"
    head_pose_sequence: Optional[List[HeadPoseFrame]] = None
    nod_metrics: Optional[NodMetrics] = None


# Mouth-open

class MouthFrame(BaseModel):
    mar: float = Field(ge=0)  # mouth aspect ratio
    t: Optional[float] = None


class MouthMetrics(BaseModel):
    mar_closed: float = Field(ge=0)
    mar_open: float = Field(ge=0)
    duration_ms: float = Field(ge=0)


class MouthOpenProof(LivenessProofBase):
    challenge: Literal["mouth-open"] = "mouth-open"
    mouth_sequence: Optional[List[MouthFrame]] = None
    mouth_metrics: Optional[MouthMetrics] = None


ChallengeStep = Annotated[
    Union[BlinkProof, SmileProof, HeadTurnProof, NodProof, MouthOpenProof],
    Field(discriminator="challenge"),
]


class SequenceProof(LivenessProofBase):
    """Plusieurs défis enchaînés dans l'ordre demandé"""
    challenge: Literal["sequence"] = "sequence"
    steps: List[ChallengeStep] = []


class GenericProof(LivenessProofBase):
    """Défi absent ou inconnu: simple détection de présence"""
    challenge: Optional[str] = None
    face_presence_ratio: Optional[float] = Field(default=None, ge=0, le=1)


KNOWN_CHALLENGES = ("blink", "smile", "head-turn", "nod", "mouth-open", "sequence")


def _challenge_tag(value: Any) -> str:
    if isinstance(value, dict):
        challenge = value.get("challenge")
    else:
        challenge = getattr(value, "challenge", None)
    return challenge if challenge in KNOWN_CHALLENGES else "generic"


LivenessProof = Annotated[
    Union[
        Annotated[BlinkProof, Tag("blink")],
        Annotated[SmileProof, Tag("smile")],
        Annotated[HeadTurnProof, Tag("head-turn")],
        Annotated[NodProof, Tag("nod")],
        Annotated[MouthOpenProof, Tag("mouth-open")],
        Annotated[SequenceProof, Tag("sequence")],
        Annotated[GenericProof, Tag("generic")],
    ],
    Discriminator(_challenge_tag),
]

liveness_proof_adapter = TypeAdapter(LivenessProof)
