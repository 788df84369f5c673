"""
workflow.py
-----------
ConsultPad — Clinical Consultation Composer — LangGraph workflow assembler
--------------------------------------------------------------------------
Assembles the submission state machine.

Graph topology:
    START → validate → (invalid → END; valid → compose)
    compose → (failure → recover; composed → submit)
    submit  → (success → complete; failure → recover)
    complete → END
    recover  → END

Key functions:
    build_submission_graph: Assembles and compiles the StateGraph.
    _route_from_validate / _route_from_compose / _route_from_submit:
        Conditional edges reading routing_decision.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from typing import Callable, Optional

from langgraph.graph import END, StateGraph

from consultation_graph.composer_node import make_composer_node
from consultation_graph.outcome_node import (
    AuditSink,
    Notifier,
    make_completion_node,
    make_recovery_node,
)
from consultation_graph.state import SubmissionState
from consultation_graph.submission_node import Transport, make_submission_node
from consultation_graph.validation_node import make_validation_node
from stores import ConsultationStores


# ── Conditional edge routers ──────────────────────────────────────────────────

def _route_from_validate(state: SubmissionState) -> str:
    """Any invalid category ends the run before a bundle is built."""
    if state.get("routing_decision") == "valid":
        return "compose"
    return "end"


def _route_from_compose(state: SubmissionState) -> str:
    if state.get("routing_decision") == "composed":
        return "submit"
    return "recover"


def _route_from_submit(state: SubmissionState) -> str:
    if state.get("routing_decision") == "success":
        return "complete"
    return "recover"


# ── Graph builder ─────────────────────────────────────────────────────────────

def build_submission_graph(
    stores: ConsultationStores,
    transport: Transport,
    end_session: Callable[[], None],
    notifier: Notifier,
    audit: Optional[AuditSink] = None,
    on_valid: Optional[Callable[[], None]] = None,
):
    """
    Assemble and compile the submission StateGraph.

    Args:
        stores:      The consultation's stores (by reference).
        transport:   ``async (bundle) -> acknowledged bundle``.
        end_session: Ends the encounter session after success.
        notifier:    ``(title, message, kind) -> None``.
        audit:       ``(event_type, patient_uuid, params) -> None``.
        on_valid:    Called when validation passes (enter SUBMITTING).

    Returns:
        CompiledGraph: Ready for ``await graph.ainvoke(create_initial_state(ctx))``.

    Raises:
        Never; propagates LangGraph compilation errors.
    """
    graph = StateGraph(SubmissionState)

    graph.add_node("validate", make_validation_node(stores, on_valid))
    graph.add_node("compose", make_composer_node(stores))
    graph.add_node("submit", make_submission_node(transport))
    graph.add_node("complete", make_completion_node(stores, end_session, notifier, audit))
    graph.add_node("recover", make_recovery_node(notifier))

    graph.set_entry_point("validate")
    graph.add_conditional_edges(
        "validate",
        _route_from_validate,
        {"compose": "compose", "end": END},
    )
    graph.add_conditional_edges(
        "compose",
        _route_from_compose,
        {"submit": "submit", "recover": "recover"},
    )
    graph.add_conditional_edges(
        "submit",
        _route_from_submit,
        {"complete": "complete", "recover": "recover"},
    )
    graph.add_edge("complete", END)
    graph.add_edge("recover", END)

    return graph.compile()
