from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from postflow.config import (
    AUTH_TIMEOUT_SECONDS,
    IMAGE_DELAY_SECONDS,
    MAX_STAGES_PER_RUN,
    STAGE_DELAY_SECONDS,
)
from postflow.models.content import ImagePlan, WriterPlan


class StageKind(str, Enum):
    INPUT = "INPUT"
    RESEARCH = "RESEARCH"
    COMPOSE = "COMPOSE"
    VISUAL = "VISUAL"
    PREVIEW = "PREVIEW"
    PUBLISH = "PUBLISH"
    OUTPUT = "OUTPUT"


MANDATORY_KINDS = frozenset({StageKind.INPUT, StageKind.OUTPUT})


class StageStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class Stage(BaseModel):
    id: str
    kind: StageKind
    enabled: bool = False
    config: dict[str, Any] = {}
    status: StageStatus = StageStatus.IDLE
    output: Any = None
    error: str | None = None

    @property
    def mandatory(self) -> bool:
        return self.kind in MANDATORY_KINDS

    def clear_run_state(self) -> None:
        self.status = StageStatus.IDLE
        self.output = None
        self.error = None


class WorkflowPlan(BaseModel):
    enabled_kinds: set[StageKind] = set()
    writer: WriterPlan = Field(default_factory=WriterPlan)
    image: ImagePlan = Field(default_factory=ImagePlan)


class EngineSettings(BaseModel):
    """Timing knobs for a run, in seconds."""
    stage_delay: float = Field(default=STAGE_DELAY_SECONDS, ge=0)
    image_delay: float = Field(default=IMAGE_DELAY_SECONDS, ge=0)
    auth_timeout: float = Field(default=AUTH_TIMEOUT_SECONDS, gt=0)
    max_stages: int = Field(default=MAX_STAGES_PER_RUN, ge=1)


class EventKind(str, Enum):
    STAGE_STATUS = "STAGE_STATUS"
    RUN_SUCCEEDED = "RUN_SUCCEEDED"
    RUN_FAILED = "RUN_FAILED"


class StageEvent(BaseModel):
    kind: EventKind
    stage_id: str | None = None
    stage_kind: StageKind | None = None
    status: StageStatus | None = None
    message: str | None = None
    output: Any = None


class RunResult(BaseModel):
    success: bool
    error: str | None = None
    context: dict[str, Any] = {}
    stages: list[Stage] = []

    def stage(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)
