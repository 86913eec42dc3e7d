"""
Engine — planning, safety partitioning and parallel execution.
"""

from converge.core.engine.executor import ParallelEngine, effective_throttle, execute
from converge.core.engine.partition import DEFAULT_DENYLIST, Denylist, Partition, partition
from converge.core.engine.planner import build_plan, generate_run_id

__all__ = [
    "DEFAULT_DENYLIST",
    "Denylist",
    "ParallelEngine",
    "Partition",
    "build_plan",
    "effective_throttle",
    "execute",
    "generate_run_id",
    "partition",
]
