"""
Parallel execution of independent jobs.

Provides ParallelExecutor for distributing independent jobs (e.g. the
preprocessing of the two epochs) across CPU cores using multiprocessing.
"""

from __future__ import annotations

import logging
import time
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _run_job(args: Tuple[int, Any, Callable, Dict[str, Any]]) -> Tuple[int, Any, Optional[str]]:
    """
    Run one job in a pool process and report the outcome instead of raising.

    The pool sends this function to its processes by reference, so it lives
    at module level. A failing job is returned as an error message so the
    remaining jobs of the batch still finish and map_jobs can report every
    failure at once.

    Args:
        args: (job_index, job, worker_fn, worker_kwargs)

    Returns:
        (job_index, result, None) on success, (job_index, None, message) on failure
    """
    index, job, worker_fn, worker_kwargs = args
    try:
        return (index, worker_fn(job, **worker_kwargs), None)
    except Exception as e:
        message = f"{type(e).__name__}: {e}"
        logger.error(f"Job {index} raised {message}")
        return (index, None, message)


class ParallelExecutor:
    """
    Bounded process pool for independent jobs.

    Results are returned in the order of the input jobs. With a single
    worker or a single job everything runs in the calling process.

    Example:
        executor = ParallelExecutor(n_workers=2)
        results = executor.map_jobs(
            jobs=[epoch_a, epoch_b],
            worker_fn=preprocess_epoch,
            worker_kwargs={'output_dir': 'out'}
        )
    """

    def __init__(self, n_workers: Optional[int] = None):
        """
        Args:
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for coordination. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        else:
            n_workers = max(1, int(n_workers))

        self.n_workers = n_workers

        logger.info(
            f"Initialized ParallelExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()})"
        )

    def map_jobs(
        self,
        jobs: List[Any],
        worker_fn: Callable,
        worker_kwargs: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[Any]:
        """
        Map a worker function over jobs.

        Args:
            jobs: Job descriptions, passed one by one to the worker
            worker_fn: Function applied to each job. Must be picklable and
                have signature: worker_fn(job, **worker_kwargs) -> result
            worker_kwargs: Fixed keyword arguments passed to each worker call
            progress_callback: Optional callback called after each job
                completes. Signature: callback(completed_count, total_count)

        Returns:
            List of results in same order as input jobs

        Raises:
            RuntimeError: If any job fails
        """
        worker_kwargs = worker_kwargs or {}
        n_jobs = len(jobs)

        if n_jobs == 0:
            logger.warning("No jobs to process")
            return []

        start_time = time.time()

        # If only 1 worker or 1 job, use sequential processing (no pool overhead)
        n_processes = min(self.n_workers, n_jobs)
        if n_processes == 1:
            logger.info(f"Processing {n_jobs} job(s) sequentially")
            results = []
            for i, job in enumerate(jobs):
                try:
                    results.append(worker_fn(job, **worker_kwargs))
                except Exception as e:
                    logger.error(f"Error processing job {i}: {e}", exc_info=True)
                    raise RuntimeError(f"Job processing failed: {e}") from e
                if progress_callback:
                    progress_callback(i + 1, n_jobs)

            logger.info(f"Sequential processing complete: {n_jobs} job(s) in {time.time() - start_time:.1f}s")
            return results

        logger.info(f"Processing {n_jobs} jobs with {n_processes} workers")
        results = self._parallel_map(jobs, worker_fn, worker_kwargs, progress_callback, n_processes)
        logger.info(f"Parallel processing complete: {n_jobs} jobs in {time.time() - start_time:.1f}s")
        return results

    def _parallel_map(
        self,
        jobs: List[Any],
        worker_fn: Callable,
        worker_kwargs: Dict[str, Any],
        progress_callback: Optional[Callable],
        n_processes: int,
    ) -> List[Any]:
        """
        Execute the jobs on a multiprocessing.Pool.

        Uses imap_unordered for responsiveness, then reorders results to
        match the input order.
        """
        n_jobs = len(jobs)
        worker_args = [(i, job, worker_fn, worker_kwargs) for i, job in enumerate(jobs)]

        results_dict = {}
        errors = []
        with Pool(processes=n_processes) as pool:
            for i, (idx, result, error) in enumerate(
                pool.imap_unordered(_run_job, worker_args)
            ):
                if error:
                    errors.append((idx, error))
                    logger.error(f"Job {idx} failed: {error}")
                else:
                    results_dict[idx] = result

                if progress_callback:
                    progress_callback(i + 1, n_jobs)

        if errors:
            error_msg = f"{len(errors)} jobs failed out of {n_jobs}"
            logger.error(error_msg)
            for idx, error in errors[:5]:  # Log first 5 errors
                logger.error(f"  Job {idx}: {error}")
            raise RuntimeError(f"{error_msg}: {errors[0][1]}")

        return [results_dict[i] for i in range(n_jobs)]
