import asyncio
import logging
from typing import AsyncIterator

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph
from langgraph.types import StreamWriter

from postflow.agents.illustrator import run_illustrator
from postflow.agents.planner import plan_workflow
from postflow.agents.publisher import Presenter, authenticate, publish_post
from postflow.agents.researcher import run_research
from postflow.agents.writer import run_writer
from postflow.graph.dispatch import Collaborators, RunEnv, dispatch
from postflow.graph.errors import InputValidationError, StageError
from postflow.graph.registry import StageRegistry
from postflow.graph.state import WorkflowContext
from postflow.models.content import AuthSession
from postflow.models.workflow import (
    EngineSettings,
    EventKind,
    RunResult,
    Stage,
    StageEvent,
    StageKind,
    StageStatus,
    WorkflowPlan,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Workflow executed successfully. Assets generated."
QUOTA_MESSAGE = "API Quota Exceeded. Please check your billing or API limits."


def default_collaborators() -> Collaborators:
    return Collaborators(
        research=run_research,
        compose=run_writer,
        image=run_illustrator,
        publish=publish_post,
        plan_workflow=plan_workflow,
        authenticate=authenticate,
    )


def user_message(error: BaseException) -> str:
    message = str(error) or error.__class__.__name__
    if "429" in message or "quota" in message.lower():
        return QUOTA_MESSAGE
    return message


def _node_name(stage: Stage) -> str:
    # Stage ids may collide with context keys ("research"), which LangGraph rejects.
    return f"stage_{stage.id}"


def validate_input(stages: list[Stage]) -> Stage:
    input_stage = next(
        (stage for stage in stages if stage.kind == StageKind.INPUT and stage.enabled),
        None,
    )
    if input_stage is None:
        raise InputValidationError("No active input stage found.")

    topic = (input_stage.config.get("topic") or "").strip()
    if not topic and not input_stage.config.get("reference_image"):
        raise InputValidationError("Input empty: enter a topic or attach a reference image.")
    return input_stage


class RunHandle:
    """One run over a private snapshot of the registry.

    ``events()`` drives the run and can be consumed exactly once.
    """

    def __init__(self, stages: list[Stage], env: RunEnv):
        self.stages = stages
        self.context: WorkflowContext = {}
        self.result: RunResult | None = None
        self._env = env
        self._consumed = False
        self._failure: StageError | Exception | None = None

    def stage(self, stage_id: str) -> Stage:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)

    @property
    def active(self) -> list[Stage]:
        return [stage for stage in self.stages if stage.enabled]

    # --- Graph construction ---

    def _status_event(self, stage: Stage) -> StageEvent:
        return StageEvent(
            kind=EventKind.STAGE_STATUS,
            stage_id=stage.id,
            stage_kind=stage.kind,
            status=stage.status,
            message=stage.error,
            output=stage.output if stage.status == StageStatus.COMPLETED else None,
        )

    def _stage_node(self, stage: Stage, position: int, total: int):
        async def node(state: WorkflowContext, writer: StreamWriter) -> dict:
            stage.status = StageStatus.RUNNING
            writer(self._status_event(stage))
            logger.info("Stage %d/%d: %s", position + 1, total, stage.id)

            try:
                if not stage.enabled:
                    raise StageError("Reached disabled stage unexpectedly", stage.id)
                outcome = await dispatch(stage, state, self._env)
            except Exception as e:
                logger.error("Stage %s failed: %s", stage.id, e)
                stage.status = StageStatus.ERROR
                stage.error = str(e) or e.__class__.__name__
                self._failure = e
                writer(self._status_event(stage))
                return {}

            stage.status = StageStatus.COMPLETED
            stage.output = outcome.output
            writer(self._status_event(stage))

            if position < total - 1 and self._env.settings.stage_delay:
                await asyncio.sleep(self._env.settings.stage_delay)
            return outcome.updates

        return node

    def _route(self, next_id: str):
        def route(state: WorkflowContext) -> str:
            return END if self._failure is not None else next_id
        return route

    def _build_graph(self) -> StateGraph:
        workflow = StateGraph(WorkflowContext)
        active = self.active

        for position, stage in enumerate(active):
            workflow.add_node(_node_name(stage), self._stage_node(stage, position, len(active)))

        workflow.set_entry_point(_node_name(active[0]))

        for current, following in zip(active, active[1:]):
            target = _node_name(following)
            workflow.add_conditional_edges(
                _node_name(current),
                self._route(target),
                {target: target, END: END},
            )
        workflow.add_edge(_node_name(active[-1]), END)

        return workflow

    # --- Execution ---

    async def events(self) -> AsyncIterator[StageEvent]:
        if self._consumed:
            raise RuntimeError("This run has already been consumed; start a new run")
        self._consumed = True

        for stage in self.stages:
            stage.clear_run_state()

        app = self._build_graph().compile()
        config = {"recursion_limit": self._env.settings.max_stages}

        try:
            async for mode, chunk in app.astream(
                {"images": []}, config, stream_mode=["custom", "values"]
            ):
                if mode == "values":
                    self.context = chunk
                else:
                    yield chunk
        except GraphRecursionError:
            self._failure = StageError(
                f"Run exceeded the maximum of {self._env.settings.max_stages} stages"
            )
            logger.error("Run exceeded %d stages", self._env.settings.max_stages)

        if self._failure is None:
            self.result = self._finish(success=True)
            yield StageEvent(kind=EventKind.RUN_SUCCEEDED, message=SUCCESS_MESSAGE)
            return

        message = user_message(self._failure)
        failed = next((s for s in self.stages if s.status == StageStatus.ERROR), None)
        self.result = self._finish(success=False, error=message)
        yield StageEvent(
            kind=EventKind.RUN_FAILED,
            stage_id=failed.id if failed else None,
            stage_kind=failed.kind if failed else None,
            status=StageStatus.ERROR,
            message=message,
        )

    def _finish(self, success: bool, error: str | None = None) -> RunResult:
        if success:
            logger.info("Run completed: %s", " -> ".join(stage.id for stage in self.active))
        return RunResult(
            success=success,
            error=error,
            context=dict(self.context),
            stages=[stage.model_copy(deep=True) for stage in self.stages],
        )

    async def wait(self) -> RunResult:
        if not self._consumed:
            async for _ in self.events():
                pass
        if self.result is None:
            raise RuntimeError("Run is still in progress")
        return self.result


class Sequencer:
    def __init__(
        self,
        collaborators: Collaborators | None = None,
        settings: EngineSettings | None = None,
    ):
        self.collaborators = collaborators or default_collaborators()
        self.settings = settings or EngineSettings()

    def start(self, registry: StageRegistry) -> RunHandle:
        """Validate the input stage and snapshot the registry for a new run.

        Raises InputValidationError before any stage is touched.
        """
        stages = registry.snapshot()
        validate_input(stages)
        return RunHandle(stages, RunEnv(self.collaborators, self.settings))

    async def run(self, registry: StageRegistry) -> RunResult:
        handle = self.start(registry)
        result = await handle.wait()
        registry.record(result.stages)
        return result

    async def plan(self, registry: StageRegistry, intent: str) -> WorkflowPlan:
        if self.collaborators.plan_workflow is None:
            raise RuntimeError("No planner configured")

        input_stage = registry.find(StageKind.INPUT)
        has_image = bool(input_stage and input_stage.config.get("reference_image"))
        plan = await self.collaborators.plan_workflow(intent, has_image)
        registry.apply_plan(plan)
        return plan

    async def authenticate(self, registry: StageRegistry, present: Presenter) -> AuthSession:
        if self.collaborators.authenticate is None:
            raise RuntimeError("No authenticator configured")

        session = await self.collaborators.authenticate(present, self.settings.auth_timeout)
        publish_stage = registry.find(StageKind.PUBLISH)
        if publish_stage is not None:
            registry.update_config(
                publish_stage.id,
                {"auth_token": session.access_token, "auth_profile": session.profile.model_dump()},
            )
        return session


async def run_workflow(
    registry: StageRegistry,
    collaborators: Collaborators | None = None,
    settings: EngineSettings | None = None,
) -> RunResult:
    return await Sequencer(collaborators, settings).run(registry)
