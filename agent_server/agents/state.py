"""LangGraph shared state — flows between the agent and tool nodes."""

from typing import Annotated

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class AgentState(TypedDict):
    """State passed through every node in the graph.

    messages — conversation history; add_messages reducer appends new
               messages rather than overwriting, and the checkpointer
               carries it across turns of the same session.
    """

    messages: Annotated[list[BaseMessage], add_messages]
