"""Enumerations shared across the pipeline."""

from __future__ import annotations

from enum import Enum


class ExecutionStatus(str, Enum):
    """Terminal outcome of one executor invocation."""

    SUCCESS = "success"
    DENIED = "denied"
    VALIDATION_FAILED = "validation_failed"
    FAULT = "fault"


class FaultStep(str, Enum):
    """Pipeline step at which a fault occurred."""

    RESOLUTION = "resolution"        # loading the subject
    AUTHORIZATION = "authorization"  # a policy faulted
    MUTATION = "mutation"
    PERSISTENCE = "persistence"
    PUBLICATION = "publication"


class FaultKind(str, Enum):
    """Classification of a fault for caller handling."""

    CONFLICT = "conflict"            # retry the whole execution
    POLICY_FAULT = "policy_fault"
    STORE_UNAVAILABLE = "store_unavailable"
    PUBLISHER_UNAVAILABLE = "publisher_unavailable"
    FOLLOW_UP_REJECTED = "follow_up_rejected"  # primary change committed
    INTERNAL = "internal"
