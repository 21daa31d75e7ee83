"""Nodeflow - AI node graph execution engine.

Walks a directed graph of AI-operation nodes, threading each node's output to
its downstream dependents with branch isolation, cancellation and timeouts.
"""

__version__ = "0.1.0"
