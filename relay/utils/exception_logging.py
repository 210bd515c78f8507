"""
Exception helpers shared by the relay handlers.

Both helpers are called on error paths that must still produce a response,
so neither of them is allowed to raise.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to a string without ever raising.

    Falls back to ``repr`` and finally to the type name when ``__str__`` is broken.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Describe an exception for an error response body.

    httpx raises several exceptions (``ReadTimeout``, ``ConnectTimeout``, ...)
    whose message is empty; the type name is used for those so the caller
    never receives a bare ``Proxy Error: ``. Exception groups list their
    sub-exceptions.

    Args:
        exception: The exception to describe

    Returns:
        A non-empty description
    """
    try:
        if exception is None:
            return "None"

        message = _safe_str(exception).strip()
        if not message:
            message = type(exception).__name__

        sub_exceptions = _safe_get_exceptions(exception)
        if sub_exceptions:
            parts = []
            for sub_exc in sub_exceptions:
                sub_message = _safe_str(sub_exc).strip()
                parts.append(
                    f"{type(sub_exc).__name__}: {sub_message}"
                    if sub_message
                    else type(sub_exc).__name__
                )
            return f"{message} (Sub-exceptions: {'; '.join(parts)})"

        return message
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
    include_traceback: bool = True,
) -> None:
    """
    Log an exception, including each sub-exception of an exception group.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Batch]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
        include_traceback: Attach ``exc_info`` to the record
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        message = format_exception_message(exception)
        sub_exceptions = (
            _safe_get_exceptions(exception) if exception is not None else []
        )

        if not sub_exceptions:
            exc_info = exception if include_traceback and exception is not None else False
            try:
                logger.log(level, f"{safe_prefix} {type(exception).__name__}: {message}", exc_info=exc_info)
            except Exception:
                logger.log(level, f"{safe_prefix} Exception: {message}")
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {message}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc if include_traceback else False,
                )
            except Exception:
                continue
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # Nothing left to report to
            pass
