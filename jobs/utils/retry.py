"""Retry policy for worker tasks."""

from settlement.utils.exceptions import is_retryable


MAX_TASK_RETRIES = 3


def retry_transient(retries: int, exception: Exception) -> bool:
    """
    Dramatiq ``retry_when`` predicate.

    Retries database, RPC and retryable payout failures; business rule
    violations are final.
    """
    return retries < MAX_TASK_RETRIES and is_retryable(exception)
