"""
Prefect flows for the advisor matching engine's periodic cycles.

Modules:
    engine_tasks       -- @task wrappers around the engine's batch operations
    engine_maintenance -- single-cycle flows (learning_cycle_flow,
                          performance_batch_flow, optimization_batch_flow) and
                          engine_maintenance_flow, which runs every cycle in one pass

These are the Prefect-deployable counterpart of the in-process
EngineScheduler loops; use one or the other, not both.
"""
