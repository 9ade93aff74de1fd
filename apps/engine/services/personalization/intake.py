"""Patient feature flags derived from the echoed intake record.

The risk-assessment layer echoes the structured intake it scored
(`input_echo`). Everything downstream reads patient attributes from a
PatientFeatureFlags built here, and only here; field defaults and
coercions are centralized in IntakeEcho.

Malformed fields never raise: they fall back to the documented defaults
("ward", "bedbound", "normal", age 0, empty lists).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)


SEDATING_MEDICATIONS = (
    "lorazepam", "diazepam", "alprazolam", "midazolam", "clonazepam",
    "zolpidem", "quetiapine", "haloperidol", "trazodone", "morphine",
    "hydromorphone", "fentanyl", "oxycodone", "propofol", "dexmedetomidine",
    "gabapentin",
)

NEURO_ADMIT_KEYWORDS = ("stroke", "intracranial", "tbi")
POSTOP_ADMIT_KEYWORDS = ("post-op", "postoperative")
TRAUMA_ADMIT_KEYWORDS = ("trauma",)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _parse_int(value: Any, default: int = 0) -> int:
    """Leading-integer parse: "5 days" → 5, 5.9 → 5, garbage → default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else default
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else default


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v) for v in value if v is not None]
    return []


class IntakeEcho(BaseModel):
    """Echoed intake record. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    level_of_care: str = "ward"
    mobility_status: str = "bedbound"
    cognitive_status: str = "normal"
    days_immobile: int = 0
    age: int = 0
    incontinent: bool = False
    albumin_low: bool = False
    devices: List[str] = []
    comorbidities: List[str] = []
    medications: List[str] = []
    admission_diagnosis: str = ""

    @field_validator("level_of_care", "mobility_status", "cognitive_status", mode="before")
    @classmethod
    def _lower_category(cls, v: Any, info) -> str:
        defaults = {
            "level_of_care": "ward",
            "mobility_status": "bedbound",
            "cognitive_status": "normal",
        }
        if not isinstance(v, str) or not v.strip():
            return defaults[info.field_name]
        return v.strip().lower()

    @field_validator("days_immobile", "age", mode="before")
    @classmethod
    def _leading_int(cls, v: Any) -> int:
        return _parse_int(v)

    @field_validator("incontinent", "albumin_low", mode="before")
    @classmethod
    def _truthy(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("devices", "comorbidities", "medications", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> List[str]:
        return _as_str_list(v)

    @field_validator("admission_diagnosis", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""


@dataclass(frozen=True)
class PatientFeatureFlags:
    loc: str = "ward"
    mob: str = "bedbound"
    cog: str = "normal"
    days_immobile: int = 0
    age: int = 0
    age70: bool = False
    age80: bool = False
    neuro: bool = False
    postop: bool = False
    trauma: bool = False
    devices: bool = False
    incontinent: bool = False
    albumin_low: bool = False
    malnutrition: bool = False
    active_cancer: bool = False
    sedating: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_intake_echo(echo: Union[Mapping[str, Any], IntakeEcho, None]) -> IntakeEcho:
    if isinstance(echo, IntakeEcho):
        return echo
    if not isinstance(echo, Mapping):
        return IntakeEcho()
    try:
        return IntakeEcho.model_validate(dict(echo))
    except ValidationError as e:
        logger.debug(f"Intake echo failed validation, using defaults: {e.error_count()} error(s)")
        return IntakeEcho()


def flags_from_echo(echo: Union[Mapping[str, Any], IntakeEcho, None]) -> PatientFeatureFlags:
    """Derive PatientFeatureFlags from an echoed intake record."""
    record = parse_intake_echo(echo)

    comorbidities = {c.strip().lower() for c in record.comorbidities}
    admit = record.admission_diagnosis.lower()
    medications = " ".join(record.medications).lower()

    return PatientFeatureFlags(
        loc=record.level_of_care,
        mob=record.mobility_status,
        cog=record.cognitive_status,
        days_immobile=record.days_immobile,
        age=record.age,
        age70=record.age >= 70,
        age80=record.age >= 80,
        neuro="stroke" in comorbidities or any(k in admit for k in NEURO_ADMIT_KEYWORDS),
        postop=any(k in admit for k in POSTOP_ADMIT_KEYWORDS),
        trauma=any(k in admit for k in TRAUMA_ADMIT_KEYWORDS),
        devices=len(record.devices) > 0,
        incontinent=record.incontinent,
        albumin_low=record.albumin_low,
        malnutrition="malnutrition" in comorbidities,
        active_cancer="active_cancer" in comorbidities,
        sedating=any(med in medications for med in SEDATING_MEDICATIONS),
    )
