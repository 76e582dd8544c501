"""AgentStream client.

Consumes event-framed streams from backend chat agents, assembles the fragments
into per-agent messages, and fans a single request out to several agents
according to a routing plan.
"""

__version__ = "0.1.0"
