from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .models import ROLE_SEQUENCE, AdvisorRole, AgentState


class DiscussionPhase(str, Enum):
    IDLE = "idle"
    TOPIC_SELECTION = "topic_selection"
    CONTEXT_ASSEMBLY = "context_assembly"
    ADVISOR_SEQUENCE = "advisor_sequence"
    PERSISTING = "persisting"


class LearningPhase(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    LESSON_EXTRACTION = "lesson_extraction"
    METRIC_PERSIST = "metric_persist"


def _initial_agent_states() -> dict[AdvisorRole, AgentState]:
    return {role: AgentState() for role in ROLE_SEQUENCE}


@dataclass
class RuntimeState:
    is_running: bool = False
    discussion_phase: DiscussionPhase = DiscussionPhase.IDLE
    learning_phase: LearningPhase = LearningPhase.IDLE
    current_topic: str | None = None
    discussion_count: int = 0
    last_discussion_finished_at: datetime | None = None
    last_learning_finished_at: datetime | None = None
    last_learning_cutoff: float | None = None
    agent_states: dict[AdvisorRole, AgentState] = field(default_factory=_initial_agent_states)

    def mark_discussion_finish(self) -> None:
        self.discussion_count += 1
        self.discussion_phase = DiscussionPhase.IDLE
        self.last_discussion_finished_at = datetime.now(timezone.utc)

    def mark_learning_finish(self) -> None:
        self.learning_phase = LearningPhase.IDLE
        self.last_learning_finished_at = datetime.now(timezone.utc)

    def snapshot_agent_states(self) -> dict[str, dict]:
        return {
            role.value: {
                "last_update": state.last_update,
                "confidence": state.confidence,
                "learning_progress": state.learning_progress,
            }
            for role, state in self.agent_states.items()
        }
