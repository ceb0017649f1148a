from __future__ import annotations

import operator
from typing import Annotated, Awaitable, Callable, Dict, List, TypedDict

from langgraph.graph import StateGraph, START, END

from product_agent.models.plan import PlanGraph, PlanNode

StepRunner = Callable[[PlanNode], Awaitable[None]]


class PlanExecutionState(TypedDict):
    """LangGraph channel state; step outcomes live on the controller's execution object."""
    finished_steps: Annotated[List[str], operator.add]


def _make_node(node: PlanNode, run_step: StepRunner):
    async def _run(state: PlanExecutionState) -> Dict[str, List[str]]:
        await run_step(node)
        return {"finished_steps": [node.id]}

    _run.__name__ = f"step_{node.id}"
    return _run


def compile_plan_graph(plan: PlanGraph, run_step: StepRunner):
    """Compile a plan into a LangGraph graph.

    Nodes without dependencies start from START, a single dependency becomes a
    plain edge and several dependencies a join edge, so every step runs once,
    after all of its dependencies, with ready siblings in the same superstep.
    """
    builder = StateGraph(PlanExecutionState)
    for node_id, node in plan.nodes.items():
        builder.add_node(node_id, _make_node(node, run_step))

    has_dependents = set()
    for node_id, node in plan.nodes.items():
        if not node.depends_on:
            builder.add_edge(START, node_id)
        elif len(node.depends_on) == 1:
            builder.add_edge(node.depends_on[0], node_id)
        else:
            builder.add_edge(list(node.depends_on), node_id)
        has_dependents.update(node.depends_on)

    for node_id in plan.nodes:
        if node_id not in has_dependents:
            builder.add_edge(node_id, END)

    return builder.compile()


def recursion_limit(plan: PlanGraph) -> int:
    return len(plan.nodes) + 10
