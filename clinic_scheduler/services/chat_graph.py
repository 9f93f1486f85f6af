from langgraph.graph import StateGraph, END

from clinic_scheduler.services.chat_state import DialogueState
from clinic_scheduler.services.chat_nodes import (
    resolve_node,
    route_after_resolve,
    book_node,
    cancel_node,
    reschedule_node,
    history_node,
    answer_node,
    refuse_node,
    abandon_node,
)

HANDLER_NODES = {
    "book_node": book_node,
    "cancel_node": cancel_node,
    "reschedule_node": reschedule_node,
    "history_node": history_node,
    "answer_node": answer_node,
    "refuse_node": refuse_node,
    "abandon_node": abandon_node,
}


def create_dialogue_graph():
    """
    Create and compile the LangGraph workflow for one patient turn.

    resolve -> router -> exactly one handler -> END
    """
    workflow = StateGraph(DialogueState)

    workflow.add_node("resolve_node", resolve_node)
    for name, node in HANDLER_NODES.items():
        workflow.add_node(name, node)

    workflow.set_entry_point("resolve_node")

    workflow.add_conditional_edges(
        "resolve_node",
        route_after_resolve,
        {name: name for name in HANDLER_NODES},
    )

    # All handler nodes end the turn
    for name in HANDLER_NODES:
        workflow.add_edge(name, END)

    return workflow.compile()


# Create singleton instance
dialogue_graph = create_dialogue_graph()
