"""Core value types, configuration and odds math for the edge engine.

This package contains pure building blocks:

- ``types``     : frozen dataclasses for games, lines, factors, edges and decisions
- ``config``    : ``ModelVersion`` enum and content-addressed ``ModelConfig`` records
- ``odds_math`` : American odds conversion, EV and cover grading

Nothing in this package imports from ``edge_engine.services`` or
``edge_engine.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
