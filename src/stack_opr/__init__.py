"""Operator engine for declarative stack orchestration.

Builds the resource graph for a configuration record, plans it against
stored state and applies the change-set through a provider, rolling back
on failure.

Package name uses 'stack_opr' (short for operator) to avoid collision
with Python's stdlib 'operator' module.
"""
