from enum import Enum
from typing import Dict, FrozenSet, List

from repricer.core.errors import RepricerError


class RepricingState(str, Enum):
    IDLE = "Idle"
    FETCHING_COMPETITORS = "FetchingCompetitors"
    FILTERING = "Filtering"
    COMPUTING = "Computing"
    SKIPPED = "Skipped"
    UPDATING = "Updating"
    DONE = "Done"
    ERROR = "Error"


TRANSITIONS: Dict[RepricingState, FrozenSet[RepricingState]] = {
    RepricingState.IDLE: frozenset({RepricingState.FETCHING_COMPETITORS, RepricingState.ERROR}),
    RepricingState.FETCHING_COMPETITORS: frozenset({RepricingState.FILTERING, RepricingState.ERROR}),
    RepricingState.FILTERING: frozenset({RepricingState.COMPUTING, RepricingState.ERROR}),
    RepricingState.COMPUTING: frozenset({RepricingState.SKIPPED, RepricingState.UPDATING, RepricingState.ERROR}),
    RepricingState.UPDATING: frozenset({RepricingState.DONE, RepricingState.ERROR}),
}

TERMINAL_STATES = frozenset({RepricingState.DONE, RepricingState.ERROR, RepricingState.SKIPPED})


class InvalidTransition(RepricerError):
    def __init__(self, current: RepricingState, target: RepricingState):
        super().__init__(f"Cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


class RepricingRun:
    """State of a single item execution; only moves along ``TRANSITIONS``."""

    def __init__(self):
        self.state = RepricingState.IDLE
        self.trail: List[RepricingState] = [RepricingState.IDLE]

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: RepricingState) -> RepricingState:
        if target not in TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransition(self.state, target)
        self.state = target
        self.trail.append(target)
        return target

    def fail(self) -> RepricingState:
        if self.state == RepricingState.ERROR:
            return self.state
        return self.advance(RepricingState.ERROR)
