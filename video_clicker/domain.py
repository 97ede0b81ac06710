# video_clicker/domain.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


# -----------------------------
# Constants
# -----------------------------

STEP_KIND_CHOICE = "choice"
STEP_KIND_TEXT = "text"
STEP_KINDS = (STEP_KIND_CHOICE, STEP_KIND_TEXT)

OP_EQ = "=="
OP_NE = "!="
OP_IN = "in"
OP_NOT_IN = "not in"
CONDITION_OPERATORS = (OP_EQ, OP_NE, OP_IN, OP_NOT_IN)

# Aliases accepted in config files
_OPERATOR_ALIASES = {
    "=": OP_EQ,
    "==": OP_EQ,
    "eq": OP_EQ,
    "!=": OP_NE,
    "ne": OP_NE,
    "in": OP_IN,
    "not in": OP_NOT_IN,
    "not_in": OP_NOT_IN,
    "notin": OP_NOT_IN,
}

ORIGIN_NEW = "new"
ORIGIN_PRE_EXISTING = "pre_existing"

MODE_ENTRY = "entry"
MODE_AUDIT = "audit"


def normalize_value(value: Any) -> str:
    """String form used for every condition comparison.

    Integral floats compare equal to their integer spelling ("2.0" == "2"),
    mirroring loose comparison of values that went through a CSV round trip.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_operator(op: Optional[str]) -> str:
    if op is None or str(op).strip() == "":
        return OP_EQ
    key = " ".join(str(op).strip().lower().split())
    return _OPERATOR_ALIASES.get(key, key)


# -----------------------------
# Workflow config
# -----------------------------

@dataclass(frozen=True)
class StepChoice:
    value: str
    label: str

    def to_dict(self) -> Dict:
        return {"value": self.value, "label": self.label}

    @staticmethod
    def from_raw(raw: Any) -> "StepChoice":
        # Plain strings are both value and label
        if isinstance(raw, dict):
            value = normalize_value(raw.get("value", raw.get("label", "")))
            label = str(raw.get("label", value))
            return StepChoice(value=value, label=label)
        value = normalize_value(raw)
        return StepChoice(value=value, label=value)


@dataclass(frozen=True)
class StepCondition:
    """
    Gate on a value recorded by an earlier step.

    step_id refers to the step whose answer is tested; value is used by the
    equality operators, values by the membership operators.
    """
    step_id: str
    operator: str = OP_EQ
    value: Optional[str] = None
    values: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        out: Dict[str, Any] = {"step_id": self.step_id, "operator": self.operator}
        if self.value is not None:
            out["value"] = self.value
        if self.values:
            out["values"] = list(self.values)
        return out

    @staticmethod
    def from_dict(d: Dict) -> "StepCondition":
        ref = d.get("step_id") or d.get("field") or ""
        raw_value = d.get("value")
        raw_values = d.get("values")
        values: Tuple[str, ...] = ()
        if isinstance(raw_values, (list, tuple)):
            values = tuple(normalize_value(v) for v in raw_values)
        return StepCondition(
            step_id=str(ref),
            operator=normalize_operator(d.get("operator")),
            value=None if raw_value is None else normalize_value(raw_value),
            values=values,
        )


@dataclass(frozen=True)
class Step:
    step_id: str
    prompt: str
    kind: str = STEP_KIND_CHOICE
    choices: Tuple[StepChoice, ...] = ()
    condition: Optional[StepCondition] = None

    def choice_values(self) -> List[str]:
        return [c.value for c in self.choices]

    def to_dict(self) -> Dict:
        out: Dict[str, Any] = {
            "step_id": self.step_id,
            "question": self.prompt,
            "type": self.kind,
        }
        if self.choices:
            out["choices"] = [c.to_dict() for c in self.choices]
        if self.condition is not None:
            out["condition"] = self.condition.to_dict()
        return out

    @staticmethod
    def from_dict(d: Dict) -> "Step":
        cond = d.get("condition")
        return Step(
            step_id=str(d.get("step_id", "")),
            prompt=str(d.get("question") or d.get("title") or ""),
            kind=str(d.get("type") or STEP_KIND_CHOICE).lower(),
            choices=tuple(StepChoice.from_raw(c) for c in (d.get("choices") or [])),
            condition=StepCondition.from_dict(cond) if isinstance(cond, dict) else None,
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """Ordered questionnaire. A condition may only look at an earlier step."""
    steps: Tuple[Step, ...] = ()

    def step_ids(self) -> List[str]:
        return [s.step_id for s in self.steps]

    def index_of(self, step_id: str) -> int:
        for i, s in enumerate(self.steps):
            if s.step_id == step_id:
                return i
        return -1

    def to_dict(self) -> Dict:
        return {"steps": [s.to_dict() for s in self.steps]}

    @staticmethod
    def from_dict(d: Dict) -> "WorkflowConfig":
        return WorkflowConfig(steps=tuple(Step.from_dict(s) for s in (d.get("steps") or [])))


# -----------------------------
# Session setup
# -----------------------------

@dataclass
class SetupMetadata:
    """
    Operator-provided session metadata.

    video_start_seconds is the time of day (seconds since midnight) shown by the
    footage at playback position 00:00:01; None if unknown.
    """
    street_name: str = ""
    guid: str = ""
    site_description: str = ""
    video_start_seconds: Optional[float] = None
    video_file: str = ""

    def to_dict(self) -> Dict:
        return {
            "streetName": self.street_name,
            "guid": self.guid,
            "siteDescription": self.site_description,
            "videoStartTime": self.video_start_seconds,
            "videoFile": self.video_file,
        }

    @staticmethod
    def from_dict(d: Dict) -> "SetupMetadata":
        start = d.get("videoStartTime")
        return SetupMetadata(
            street_name=str(d.get("streetName", "") or ""),
            guid=str(d.get("guid", "") or ""),
            site_description=str(d.get("siteDescription", "") or ""),
            video_start_seconds=None if start in (None, "") else float(start),
            video_file=str(d.get("videoFile", "") or ""),
        )


# -----------------------------
# Entries
# -----------------------------

@dataclass(frozen=True)
class Entry:
    """
    A committed annotation.

    Entries are never edited in place: soft deletion produces a copy with
    deleted=True, everything else is superseded by undo/redo.
    """
    entry_id: str
    playback_time_seconds: float
    click_x: float
    click_y: float
    derived_timestamp: str = ""
    step_values: Dict[str, str] = field(default_factory=dict)
    origin: str = ORIGIN_NEW
    deleted: bool = False

    def value_for(self, step_id: str) -> str:
        return self.step_values.get(step_id, "")

    def mark_deleted(self) -> "Entry":
        return replace(self, deleted=True)

    def to_dict(self) -> Dict:
        return {
            "entryId": self.entry_id,
            "playback_time_seconds": float(self.playback_time_seconds),
            "click_x": float(self.click_x),
            "click_y": float(self.click_y),
            "derived_timestamp": self.derived_timestamp,
            "values": dict(self.step_values),
            "origin": self.origin,
            "deleted": bool(self.deleted),
        }

    @staticmethod
    def from_dict(d: Dict) -> "Entry":
        return Entry(
            entry_id=str(d["entryId"]),
            playback_time_seconds=float(d.get("playback_time_seconds", 0.0)),
            click_x=float(d.get("click_x", 0.0)),
            click_y=float(d.get("click_y", 0.0)),
            derived_timestamp=str(d.get("derived_timestamp") or d.get("ocr_timestamp") or ""),
            step_values={str(k): normalize_value(v) for k, v in (d.get("values") or {}).items()},
            origin=str(d.get("origin", ORIGIN_NEW)),
            deleted=bool(d.get("deleted", False)),
        )


@dataclass(frozen=True)
class Notice:
    """Non-blocking message for the operator (rendered as a toast elsewhere)."""
    level: str  # "info" | "success" | "warning" | "error"
    message: str
