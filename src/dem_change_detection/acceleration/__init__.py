"""
Acceleration Module

Process-level parallelism for independent jobs, such as the
preprocessing of the two epochs of a change detection run.
"""

from .parallel_executor import ParallelExecutor

__all__ = [
    "ParallelExecutor",
]
