"""Control plane: the sole path for state changes.

Every mutation goes::

    Command -> structural validation -> PolicyEvaluator -> Aggregate
            -> AggregateStore.save -> EventPublisher -> Presenter

Modules:
    policy_types: PolicyCheck, PolicyDecision, PolicyArgs, Policy protocol
    policy_evaluator: ordered, fail-fast policy evaluation
    policies: reusable and time-off policies
    lifecycle: per-invocation state machine
    audit_log: append-only journal of invocation outcomes
    results: Success / Denied / ValidationFailed / Fault
    use_case: UseCase definition and CommandSchema base
    executor: UseCaseExecutor (single entry point)
    time_off_use_cases: the time-off use cases
"""
