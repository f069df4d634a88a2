"""Collaborators consumed by the executor: stores and publishers."""
