"""Error handling helpers for non-critical failure paths."""

import logging

from updatewatch.utils.security import sanitize_log_message


def log_and_continue(
    logger_instance: logging.Logger,
    error: BaseException,
    context_message: str,
    log_level: str = "warning",
) -> None:
    """Log error but continue execution (for non-critical errors).

    Use this for errors that should be logged but don't require halting execution,
    such as a failing notification provider or a failing audit handler.

    Args:
        logger_instance: Logger instance to use
        error: The exception that was caught
        context_message: Context about where/why this error occurred
        log_level: Logging level to use (default: warning)

    Examples:
        >>> logger = logging.getLogger(__name__)
        >>> try:
        ...     await provider.trigger(container)
        ... except Exception as e:
        ...     log_and_continue(logger, e, "[ntfy] Trigger failed")
    """
    log_method = getattr(logger_instance, log_level, logger_instance.warning)
    log_method(
        f"{context_message}: {type(error).__name__}: {sanitize_log_message(str(error))}"
    )
    logger_instance.debug(f"{context_message} (traceback)", exc_info=error)
