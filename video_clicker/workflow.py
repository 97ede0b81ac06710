# video_clicker/workflow.py
from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from .domain import (
    OP_EQ,
    OP_IN,
    OP_NE,
    OP_NOT_IN,
    Step,
    WorkflowConfig,
    normalize_value,
)


class ConfigWorkflow:
    """
    Decides which questionnaire step comes next (or before) for a draft.

    Stateless: every answer is read from the draft values passed in, so
    conditions are re-evaluated on each navigation and nothing is cached.
    The config is expected to be validated already (see config.parse_workflow_config).
    """

    def __init__(self, config: WorkflowConfig):
        self._config = config
        self._steps: List[Step] = list(config.steps)

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._steps)

    def step_at(self, index: int) -> Step:
        return self._steps[index]

    def evaluate(self, step: Step, draft_values: Mapping[str, str]) -> bool:
        """
        True if the step should be shown for these draft values.

        A condition on a step that has not been answered is unsatisfied.
        """
        cond = step.condition
        if cond is None:
            return True
        if cond.step_id not in draft_values:
            return False

        answer = normalize_value(draft_values[cond.step_id])
        if cond.operator == OP_NE:
            return answer != normalize_value(cond.value)
        if cond.operator == OP_IN:
            return answer in cond.values
        if cond.operator == OP_NOT_IN:
            return answer not in cond.values
        if cond.operator == OP_EQ:
            return answer == normalize_value(cond.value)
        # validated configs never get here; behave like equality
        return answer == normalize_value(cond.value)

    def next_valid_step(self, from_index: int, draft_values: Mapping[str, str]) -> Optional[int]:
        """First qualifying step at or after from_index, or None when the workflow is done."""
        for i in range(max(0, from_index), len(self._steps)):
            if self.evaluate(self._steps[i], draft_values):
                return i
        return None

    def prev_valid_step(self, from_index: int, draft_values: Mapping[str, str]) -> Optional[int]:
        """Last qualifying step strictly before from_index, or None."""
        for i in range(min(from_index, len(self._steps)) - 1, -1, -1):
            if self.evaluate(self._steps[i], draft_values):
                return i
        return None

    def first_step(self) -> Optional[int]:
        return self.next_valid_step(0, {})

    def rolled_back_values(self, leaving_index: int, target_index: int, draft_values: Mapping[str, str]) -> Dict[str, str]:
        """
        Draft values after navigating back from leaving_index to target_index.

        Drops the answers of both steps (the target is asked again), then any
        later answer whose step no longer qualifies. Later steps are checked in
        order so a purge cascades to steps that depended on it.
        """
        values = dict(draft_values)
        for idx in (leaving_index, target_index):
            if 0 <= idx < len(self._steps):
                values.pop(self._steps[idx].step_id, None)

        for i in range(target_index + 1, len(self._steps)):
            step = self._steps[i]
            if step.step_id in values and not self.evaluate(step, values):
                del values[step.step_id]
        return values
