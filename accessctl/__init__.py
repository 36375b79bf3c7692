"""
accessctl - role-based access-control authorization engine.

The engine decides whether an actor may perform an action on a resource,
manages roles and their inheritance, tracks time-bounded role assignments,
evaluates security policies and records every decision in an audit trail.
"""

__version__ = "0.1.0"
