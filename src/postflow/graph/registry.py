import copy
import logging

from postflow.config import DEFAULT_IMAGE_COUNT, DEFAULT_LANGUAGE, DEFAULT_PLATFORM, DEFAULT_TONE
from postflow.models.workflow import Stage, StageKind, WorkflowPlan

logger = logging.getLogger(__name__)


def default_stages() -> list[Stage]:
    return [
        Stage(id="input", kind=StageKind.INPUT, enabled=True, config={"topic": ""}),
        Stage(id="research", kind=StageKind.RESEARCH),
        Stage(
            id="compose",
            kind=StageKind.COMPOSE,
            config={"tone": DEFAULT_TONE, "language": DEFAULT_LANGUAGE},
        ),
        Stage(id="visual", kind=StageKind.VISUAL, config={"image_count": DEFAULT_IMAGE_COUNT}),
        Stage(id="preview", kind=StageKind.PREVIEW, config={"preview_mode": DEFAULT_PLATFORM}),
        Stage(id="publish", kind=StageKind.PUBLISH),
        Stage(id="output", kind=StageKind.OUTPUT, enabled=True),
    ]


def _check_layout(stages: list[Stage]) -> None:
    if not stages or stages[0].kind != StageKind.INPUT or stages[-1].kind != StageKind.OUTPUT:
        raise ValueError("A workflow must start with an INPUT stage and end with an OUTPUT stage")

    ids = [stage.id for stage in stages]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Duplicate stage ids: {ids}")

    anchors = [stage for stage in stages if stage.mandatory]
    if len(anchors) != 2:
        raise ValueError("Exactly one INPUT and one OUTPUT stage are allowed")


class StageRegistry:
    """Ordered set of stages. Registry order is execution order."""

    def __init__(self, stages: list[Stage] | None = None):
        declared = stages if stages is not None else default_stages()
        _check_layout(declared)
        self._defaults = [stage.model_copy(deep=True) for stage in declared]
        self.stages: list[Stage] = []
        self.reset()

    def __iter__(self):
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    def get(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(f"Unknown stage: {stage_id}")

    def find(self, kind: StageKind) -> Stage | None:
        for stage in self.stages:
            if stage.kind == kind:
                return stage
        return None

    def active_order(self) -> list[Stage]:
        return [stage for stage in self.stages if stage.enabled]

    def edges(self) -> list[tuple[str, str]]:
        active = self.active_order()
        return [(src.id, dst.id) for src, dst in zip(active, active[1:])]

    def toggle(self, stage_id: str) -> Stage:
        stage = self.get(stage_id)
        if stage.mandatory:
            logger.debug("Ignoring toggle of mandatory stage %s", stage_id)
            return stage
        stage.enabled = not stage.enabled
        return stage

    def update_config(self, stage_id: str, partial: dict) -> Stage:
        stage = self.get(stage_id)
        stage.config = {**stage.config, **partial}
        return stage

    def reset(self) -> None:
        self.stages = [stage.model_copy(deep=True) for stage in self._defaults]
        for stage in self.stages:
            stage.clear_run_state()
            if stage.mandatory:
                stage.enabled = True

    def apply_plan(self, plan: WorkflowPlan) -> None:
        for stage in self.stages:
            if stage.mandatory:
                stage.enabled = True
            else:
                stage.enabled = stage.kind in plan.enabled_kinds

            updates = {}
            if stage.kind == StageKind.COMPOSE:
                updates = {
                    key: value
                    for key, value in plan.writer.model_dump().items()
                    if value
                }
                updates["platform"] = DEFAULT_PLATFORM
            elif stage.kind == StageKind.VISUAL:
                if plan.image.style:
                    updates["image_style"] = plan.image.style
                if plan.image.count:
                    updates["image_count"] = plan.image.count
            elif stage.kind == StageKind.PREVIEW:
                updates["preview_mode"] = DEFAULT_PLATFORM

            if updates:
                stage.config = {**stage.config, **updates}

        logger.info(
            "Applied plan: %s",
            " -> ".join(stage.kind.value for stage in self.active_order()),
        )

    def snapshot(self) -> list[Stage]:
        return copy.deepcopy(self.stages)

    def record(self, finished: list[Stage]) -> None:
        """Copy run state (status, output, error) back from a finished run.

        Config and enabled flags are left alone, so edits made while the run
        was in flight survive.
        """
        by_id = {stage.id: stage for stage in finished}
        for stage in self.stages:
            done = by_id.get(stage.id)
            if done is None:
                continue
            stage.status = done.status
            stage.output = done.output
            stage.error = done.error
