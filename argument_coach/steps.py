"""
Step Sequencer

The seven argument steps in their fixed order. `next_step` is the only forward
transition; the terminal step completes instead of advancing.
"""

from enum import Enum
from typing import Dict, List, Mapping, Optional


class Step(str, Enum):
    CLAIM = "claim"
    GROUNDS = "grounds"
    WARRANT = "warrant"
    GROUNDS_BACKING = "groundsBacking"
    WARRANT_BACKING = "warrantBacking"
    QUALIFIER = "qualifier"
    REBUTTAL = "rebuttal"


STEP_ORDER: List[Step] = [
    Step.CLAIM,
    Step.GROUNDS,
    Step.WARRANT,
    Step.GROUNDS_BACKING,
    Step.WARRANT_BACKING,
    Step.QUALIFIER,
    Step.REBUTTAL,
]

FIRST_STEP = STEP_ORDER[0]
TERMINAL_STEP = STEP_ORDER[-1]

# Wire name (camelCase) -> draft column name (snake_case)
STEP_FIELD_NAMES: Dict[Step, str] = {
    Step.CLAIM: "claim",
    Step.GROUNDS: "grounds",
    Step.WARRANT: "warrant",
    Step.GROUNDS_BACKING: "grounds_backing",
    Step.WARRANT_BACKING: "warrant_backing",
    Step.QUALIFIER: "qualifier",
    Step.REBUTTAL: "rebuttal",
}

_VALUES = {step.value: step for step in STEP_ORDER}


def parse_step(value: object) -> Optional[Step]:
    """Return the Step for a wire value, or None if it is not one."""
    if isinstance(value, Step):
        return value
    if isinstance(value, str):
        return _VALUES.get(value)
    return None


def step_index(step: Step) -> int:
    return STEP_ORDER.index(step)


def next_step(step: Step) -> Optional[Step]:
    """Get the step after `step`, or None for the terminal step."""
    index = step_index(step)
    if index == len(STEP_ORDER) - 1:
        return None
    return STEP_ORDER[index + 1]


def is_terminal(step: Step) -> bool:
    return step == TERMINAL_STEP


def field_name(step: Step) -> str:
    return STEP_FIELD_NAMES[step]


def fields_by_step(record: object) -> Dict[Step, str]:
    """Read the seven text fields off a draft-like object (attributes or mapping)."""
    values: Dict[Step, str] = {}
    for step, column in STEP_FIELD_NAMES.items():
        if isinstance(record, Mapping):
            raw = record.get(column, record.get(step.value, ""))
        else:
            raw = getattr(record, column, "")
        values[step] = raw or ""
    return values


def resolve_navigation(
    clicked: Step,
    current: Step,
    completed: Mapping[Step, bool],
) -> Step:
    """
    Resolve a user click on a step into the step that becomes live.

    Only the live step or an earlier one may be opened. If an unfinished step
    sits ahead of the clicked one, the session is rerouted to the first such
    step so no gap of unfinished steps is left behind. The reroute never goes
    past the live step.
    """
    if step_index(clicked) > step_index(current):
        raise ValueError(
            f"Cannot navigate to '{clicked.value}' ahead of live step '{current.value}'"
        )

    for step in STEP_ORDER[: step_index(current) + 1]:
        if not completed.get(step, False):
            if step_index(step) > step_index(clicked):
                return step
            break

    return clicked
