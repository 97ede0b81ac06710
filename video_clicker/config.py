# video_clicker/config.py
from __future__ import annotations

import json
import logging
from typing import Dict, List

from .domain import (
    CONDITION_OPERATORS,
    OP_EQ,
    OP_IN,
    OP_NE,
    OP_NOT_IN,
    STEP_KIND_CHOICE,
    STEP_KINDS,
    WorkflowConfig,
    normalize_operator,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


def validate_config(data: Dict) -> List[str]:
    """
    Checks a raw workflow config payload and returns every problem found.

    Rules:
      - a non-empty "steps" list
      - unique, non-empty step_id per step
      - choice steps need a prompt and at least one choice
      - conditions need a known operator, a value (==, !=) or values (in, not in),
        and must reference an existing step at a strictly smaller index
    """
    if not isinstance(data, dict):
        return ["Config must be a JSON object"]

    steps = data.get("steps")
    if not isinstance(steps, list):
        return ['Config must have a "steps" array']

    errors: List[str] = []
    if not steps:
        errors.append("Config must have at least one step")

    positions: Dict[str, int] = {}
    for index, step in enumerate(steps):
        if not isinstance(step, dict):
            errors.append(f"Step {index + 1}: must be an object")
            continue
        step_id = str(step.get("step_id") or "")
        if not step_id:
            errors.append(f"Step {index + 1}: Missing step_id")
        elif step_id in positions:
            errors.append(f"Step {index + 1} ({step_id}): Duplicate step_id")
        else:
            positions[step_id] = index

    for index, step in enumerate(steps):
        if not isinstance(step, dict):
            continue
        name = f"Step {index + 1} ({step.get('step_id') or 'unknown'})"
        kind = str(step.get("type") or STEP_KIND_CHOICE).lower()

        if kind not in STEP_KINDS:
            errors.append(f"{name}: Unknown step type '{kind}'")
        if kind == STEP_KIND_CHOICE and not (step.get("question") or step.get("title")):
            errors.append(f"{name}: Missing question or title")
        if kind == STEP_KIND_CHOICE:
            choices = step.get("choices")
            if not isinstance(choices, list) or not choices:
                errors.append(f"{name}: Choice type must have a non-empty choices array")

        cond = step.get("condition")
        if cond is None:
            continue
        if not isinstance(cond, dict):
            errors.append(f"{name}: Condition must be an object")
            continue
        errors.extend(_validate_condition(name, index, step.get("step_id"), cond, positions))

    return errors


def _validate_condition(name: str, index: int, own_id, cond: Dict, positions: Dict[str, int]) -> List[str]:
    errors: List[str] = []
    ref = cond.get("step_id") or cond.get("field")
    op = normalize_operator(cond.get("operator"))

    if not ref:
        errors.append(f"{name}: Condition missing field or step_id")
    if op not in CONDITION_OPERATORS:
        errors.append(f"{name}: Unknown condition operator '{cond.get('operator')}'")
    elif op in (OP_EQ, OP_NE) and cond.get("value") is None:
        errors.append(f"{name}: Condition missing value")
    elif op in (OP_IN, OP_NOT_IN):
        values = cond.get("values")
        if not isinstance(values, list) or not values:
            errors.append(f"{name}: Condition missing values array")

    if not ref:
        return errors
    if ref == own_id:
        errors.append(f"{name}: Condition references itself (circular dependency)")
    elif ref not in positions:
        errors.append(f'{name}: Condition references non-existent step_id "{ref}"')
    elif positions[ref] >= index:
        errors.append(f'{name}: Condition references step "{ref}" which comes after or at the same position')
    return errors


def parse_workflow_config(data: Dict) -> WorkflowConfig:
    """Validates and converts a raw payload. Raises ConfigError with all problems."""
    errors = validate_config(data)
    if errors:
        logger.error("Workflow config rejected with %d error(s)", len(errors))
        raise ConfigError(errors)
    cfg = WorkflowConfig.from_dict(data)
    logger.info("Workflow config loaded: %d steps (%s)", len(cfg.steps), ", ".join(cfg.step_ids()))
    return cfg


def load_workflow_config(path: str) -> WorkflowConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError([f"{path}: not valid JSON ({e.msg} at line {e.lineno})"]) from e
    except OSError as e:
        raise ConfigError([f"{path}: cannot be read ({e})"]) from e
    return parse_workflow_config(data)
