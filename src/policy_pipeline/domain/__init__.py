"""Domain layer: value objects, commands, aggregates and domain events.

Every other layer depends on these primitives but never modifies them.
Value objects, commands and events are immutable; aggregates change
only through their own mutation operations.
"""
