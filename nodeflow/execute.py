"""Run coordinator: executes one workflow run level by level."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from .config import NodeflowConfig, load_config
from .contracts import (
    BRANCH_KEY,
    ERROR_HANDLED_KEY,
    Connection,
    Node,
    NodeState,
    NodeType,
    RunResult,
    RunStatus,
    StepStatus,
    TriggerEvent,
    Workflow,
    utcnow,
)
from .dispatch import ExecutorRegistry, default_registry
from .durable import InMemoryStepRunner, StepRunner
from .errors import NodeExecutionError, PersistenceError, WorkflowNotFoundError, WorkflowRunError
from .expressions import resolve_expressions
from .graph import build_adjacency, downstream_node_ids, execution_levels, handler_subgraph_ids
from .namespace import Contribution, merge_outputs, snapshot
from .nodes import ExecutionContext
from .persistence import StepRecorder, WorkflowRepository, get_repository, truncate_payload
from .status import StatusPublisher

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Validated schedule for one workflow snapshot."""

    levels: List[List[Node]]
    handler_levels: List[List[Node]]
    adjacency: Dict[str, List[Connection]]


@dataclass
class _RunState:
    run_id: str
    workflow: Workflow
    plan: ExecutionPlan
    namespace: Dict[str, Any]
    node_states: Dict[str, NodeState]
    disabled: Set[str] = field(default_factory=set)
    handlers_ran: bool = False


@dataclass
class _NodeOutcome:
    """What one node adds to the namespace when its level settles."""

    contributions: List[Contribution] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _as_output(result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    if not isinstance(result, Mapping):
        raise TypeError(f"Executor returned {type(result).__name__}, expected a mapping")
    return dict(result)


class RunCoordinator:
    """Drive a workflow run from trigger event to terminal status.

    Nodes run level by level; all nodes of a level run concurrently against
    the same namespace snapshot and their outputs are merged once the whole
    level has settled. Side effects go through ``step`` so that replaying a
    run with the same :class:`StepRunner` skips work that already completed.
    """

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        registry: ExecutorRegistry | None = None,
        status: StatusPublisher | None = None,
        config: NodeflowConfig | None = None,
    ) -> None:
        self._config = config or load_config()
        if repository is None:
            # an explicit config names its own database; otherwise share the cached one
            repository = (
                get_repository(database_url=self._config.database_url)
                if config is not None and self._config.database_url
                else get_repository()
            )
        self._repository = repository
        self._registry = registry or default_registry()
        self._status = status or StatusPublisher()
        self._recorder = StepRecorder(
            self._repository, self._config.engine.max_payload_size
        )

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    def plan(self, workflow: Workflow) -> ExecutionPlan:
        """Validate ``workflow`` and split it into regular and handler levels.

        Raises:
            CycleError: if the graph is not acyclic.
            UnknownNodeTypeError: if a node type has no executor.
        """
        execution_levels(workflow.nodes, workflow.connections)
        for node in workflow.nodes:
            self._registry.dispatch(node.type)

        handler_ids = handler_subgraph_ids(
            workflow.nodes, workflow.connections, NodeType.ERROR_TRIGGER.value
        )
        regular = [n for n in workflow.nodes if n.id not in handler_ids]
        handlers = [n for n in workflow.nodes if n.id in handler_ids]
        return ExecutionPlan(
            levels=execution_levels(regular, workflow.connections),
            handler_levels=execution_levels(handlers, workflow.connections),
            adjacency=build_adjacency(workflow.connections),
        )

    async def run(
        self, event: TriggerEvent, step: Optional[StepRunner] = None
    ) -> RunResult:
        """Execute the workflow named by ``event``.

        Raises:
            WorkflowNotFoundError: if the workflow does not exist.
            CycleError, UnknownNodeTypeError: before any run record is created.
            WorkflowRunError: if a node failure was not recovered.
        """
        step = step or InMemoryStepRunner()
        workflow = await self._repository.get_workflow(event.workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(event.workflow_id)
        plan = self.plan(workflow)

        run = await step.run(
            "create-run",
            lambda: self._repository.create_run(workflow.id, event.event_id),
        )
        logger.info(
            f"Run {run.id} started for workflow {workflow.id} (event {event.event_id})"
        )

        state = _RunState(
            run_id=run.id,
            workflow=workflow,
            plan=plan,
            namespace={"trigger": event.initial_data},
            node_states={n.id: NodeState.PENDING for n in workflow.nodes},
        )

        try:
            for index, level in enumerate(plan.levels):
                logger.debug(
                    f"Run {run.id} level {index}: {', '.join(n.id for n in level)}"
                )
                await self._run_level(state, level, step)
        except Exception as e:
            logger.error(f"Run {run.id} of workflow {workflow.id} failed: {e}")
            await self._complete(state, RunStatus.FAILED, error=_error_message(e))
            raise

        await step.run(
            "update-run",
            lambda: self._complete(state, RunStatus.SUCCESS),
        )
        logger.info(f"Run {run.id} of workflow {workflow.id} succeeded")
        return RunResult(
            run_id=run.id,
            workflow_id=workflow.id,
            status=RunStatus.SUCCESS,
            result=state.namespace,
            node_states=state.node_states,
        )

    # ------------------------------------------------------------------
    async def _run_level(
        self, state: _RunState, level: List[Node], step: StepRunner
    ) -> None:
        view = snapshot(state.namespace)
        results = await asyncio.gather(
            *(self._run_node(state, node, view, step) for node in level),
            return_exceptions=True,
        )

        contributions: List[Contribution] = []
        extra: Dict[str, Any] = {}
        failures: List[NodeExecutionError] = []
        for result in results:
            if isinstance(result, NodeExecutionError):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                contributions.extend(result.contributions)
                extra.update(result.extra)

        state.namespace = merge_outputs(state.namespace, contributions, extra)
        if failures:
            raise WorkflowRunError(state.workflow.id, state.run_id, failures)

    async def _run_node(
        self,
        state: _RunState,
        node: Node,
        view: Mapping[str, Any],
        step: StepRunner,
    ) -> _NodeOutcome:
        if node.id in state.disabled:
            logger.debug(f"Skipping disabled node {node.id}")
            state.node_states[node.id] = NodeState.SKIPPED
            return _NodeOutcome()

        state.node_states[node.id] = NodeState.RUNNING
        executor = self._registry.dispatch(node.type)
        logger.info(f"Executing node {node.id} ({node.type})")
        logger.debug(f"Variables available to {node.id}: {', '.join(sorted(view))}")

        # the raw configuration is recorded when resolution itself fails
        resolved: Dict[str, Any] = node.data
        try:
            resolved = resolve_expressions(node.data, view)
            ctx = self._context(state, node, resolved, view, step)
            output = _as_output(
                await step.run(f"execute-node-{node.id}", lambda: executor.execute(ctx))
            )
        except Exception as e:
            return await self._handle_failure(state, node, resolved, view, e, step)

        logger.info(f"Node {node.id} finished successfully")
        state.node_states[node.id] = NodeState.SUCCEEDED
        await step.run(
            f"save-step-{node.id}",
            lambda: self._recorder.upsert_step(
                state.run_id, node.id, StepStatus.SUCCESS, input=resolved, output=output
            ),
        )
        self._prune(state.plan.adjacency, node, output, state.disabled)
        return _NodeOutcome(contributions=[Contribution(node.id, node.name, output)])

    async def _handle_failure(
        self,
        state: _RunState,
        node: Node,
        resolved: Dict[str, Any],
        view: Mapping[str, Any],
        exc: Exception,
        step: StepRunner,
    ) -> _NodeOutcome:
        message = _error_message(exc)
        state.node_states[node.id] = NodeState.FAILED
        logger.error(f"Node {node.id} failed: {message}")
        await step.run(
            f"save-step-fail-{node.id}",
            lambda: self._recorder.upsert_step(
                state.run_id, node.id, StepStatus.FAILED, input=resolved, error=message
            ),
        )

        if node.continue_on_failure:
            logger.warning(f"Node {node.id} failed, but continuing")
            state.node_states[node.id] = NodeState.RECOVERED
            return _NodeOutcome()

        failure = NodeExecutionError(node.id, node.name, message, cause=exc)
        if not state.plan.handler_levels:
            state.node_states[node.id] = NodeState.UNRECOVERED
            raise failure from exc

        error = {
            "message": message,
            "nodeId": node.id,
            "nodeName": node.name,
            "timestamp": utcnow().isoformat(),
        }
        outcome = _NodeOutcome(extra={"error": error})

        policy = self._config.engine.error_trigger_policy
        if policy == "per_run" and state.handlers_ran:
            logger.info(f"Error handlers already ran in run {state.run_id}")
        else:
            state.handlers_ran = True
            try:
                outcome.contributions.extend(
                    await self._run_handlers(state, node, error, view, step)
                )
            except NodeExecutionError as handler_failure:
                logger.error(
                    f"Error handler failed while handling node {node.id}: {handler_failure}"
                )
                state.node_states[node.id] = NodeState.UNRECOVERED
                raise failure from exc

        state.node_states[node.id] = NodeState.RECOVERED
        outcome.contributions.append(
            Contribution(node.id, node.name, {ERROR_HANDLED_KEY: True, **error}, spread=False)
        )
        return outcome

    async def _run_handlers(
        self,
        state: _RunState,
        failed: Node,
        error: Dict[str, Any],
        view: Mapping[str, Any],
        step: StepRunner,
    ) -> List[Contribution]:
        """Run the error-handler subgraph inline for one failed node."""
        logger.info(f"Rerouting failure of node {failed.id} to error handlers")
        namespace = merge_outputs(view, [], {"error": error})
        disabled: Set[str] = set()
        produced: List[Contribution] = []

        for level in state.plan.handler_levels:
            handler_view = snapshot(namespace)
            results = await asyncio.gather(
                *(
                    self._run_handler_node(
                        state, node, failed, error, handler_view, disabled, step
                    )
                    for node in level
                ),
                return_exceptions=True,
            )
            contributions: List[Contribution] = []
            for result in results:
                if isinstance(result, BaseException):
                    raise result
                if result is not None:
                    contributions.append(result)
            namespace = merge_outputs(namespace, contributions)
            produced.extend(contributions)

        return produced

    async def _run_handler_node(
        self,
        state: _RunState,
        node: Node,
        failed: Node,
        error: Dict[str, Any],
        view: Mapping[str, Any],
        disabled: Set[str],
        step: StepRunner,
    ) -> Optional[Contribution]:
        if node.id in disabled:
            state.node_states[node.id] = NodeState.SKIPPED
            return None

        state.node_states[node.id] = NodeState.RUNNING
        executor = self._registry.dispatch(node.type)
        suffix = f"{node.id}-{failed.id}"
        step_input: Dict[str, Any] = (
            error if node.type == NodeType.ERROR_TRIGGER.value else node.data
        )

        try:
            resolved = resolve_expressions(node.data, view)
            if node.type != NodeType.ERROR_TRIGGER.value:
                step_input = resolved
            ctx = self._context(state, node, resolved, view, step)
            output = _as_output(
                await step.run(
                    f"execute-error-handler-{suffix}", lambda: executor.execute(ctx)
                )
            )
        except Exception as e:
            message = _error_message(e)
            state.node_states[node.id] = NodeState.FAILED
            await step.run(
                f"save-error-handler-{suffix}",
                lambda: self._recorder.upsert_step(
                    state.run_id, node.id, StepStatus.FAILED, input=step_input, error=message
                ),
            )
            if node.continue_on_failure:
                state.node_states[node.id] = NodeState.RECOVERED
                return None
            state.node_states[node.id] = NodeState.UNRECOVERED
            raise NodeExecutionError(node.id, node.name, message, cause=e) from e

        state.node_states[node.id] = NodeState.SUCCEEDED
        await step.run(
            f"save-error-handler-{suffix}",
            lambda: self._recorder.upsert_step(
                state.run_id, node.id, StepStatus.SUCCESS, input=step_input, output=output
            ),
        )
        self._prune(state.plan.adjacency, node, output, disabled)
        return Contribution(node.id, node.name, output)

    # ------------------------------------------------------------------
    def _context(
        self,
        state: _RunState,
        node: Node,
        resolved: Dict[str, Any],
        view: Mapping[str, Any],
        step: StepRunner,
    ) -> ExecutionContext:
        return ExecutionContext(
            data=resolved,
            node_id=node.id,
            run_id=state.run_id,
            user_id=state.workflow.user_id,
            namespace=view,
            emit_status=self._status.bind(state.run_id, node.id),
            step=step,
        )

    @staticmethod
    def _prune(
        adjacency: Dict[str, List[Connection]],
        node: Node,
        output: Mapping[str, Any],
        disabled: Set[str],
    ) -> None:
        branch = output.get(BRANCH_KEY)
        if branch is None or branch == "":
            return
        for conn in adjacency.get(node.id, []):
            if conn.from_output == str(branch):
                continue
            disabled.add(conn.to_node_id)
            disabled.update(downstream_node_ids(conn.to_node_id, adjacency))
            logger.debug(
                f"Branch '{branch}' of node {node.id} disables {conn.to_node_id} and its descendants"
            )

    async def _complete(
        self, state: _RunState, status: RunStatus, error: Optional[str] = None
    ) -> None:
        try:
            await self._repository.complete_run(
                state.run_id,
                status,
                output=truncate_payload(
                    state.namespace, self._config.engine.max_payload_size
                ),
                error=error,
            )
        except PersistenceError as e:
            logger.error(f"Failed to record {status.value} for run {state.run_id}: {e}")
