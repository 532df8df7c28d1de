"""ActionChat — org-scoped API sources, tools, and LLM agents.

The backend that lets an organization register external API sources,
derive callable tools from them, and configure agents that use those
tools. Every org-scoped route is gated by the membership role of the
caller.
"""

__version__ = "0.1.0"
