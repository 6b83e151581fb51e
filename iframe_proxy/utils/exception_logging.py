"""
Utility functions for exception logging that never raise, even for exception
groups, chained causes or objects whose string conversion is broken.
"""

import logging

# Guards against pathological or cyclic cause chains
MAX_CAUSE_DEPTH = 8


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object, falling back to safe alternatives
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


def _cause_chain(exception) -> list:
    """Explicit causes (or implicit contexts) below ``exception``, outermost first."""
    chain = []
    seen = {id(exception)}
    current = exception
    try:
        while len(chain) < MAX_CAUSE_DEPTH:
            current = current.__cause__ or current.__context__
            if current is None or id(current) in seen:
                break
            seen.add(id(current))
            chain.append(current)
    except Exception:
        pass
    return chain


def _describe(exception) -> str:
    name = type(exception).__name__ if exception is not None else "NoneType"
    return f"{name}: {_safe_str(exception)}"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its sub-exceptions (for exception groups) and its
    cause chain. Designed to never throw, even for broken exception objects
    or failing loggers.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Rewrite]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        safe_exception_str = "None" if exception is None else _safe_str(exception)

        sub_exceptions = []
        if exception is not None and hasattr(exception, "exceptions"):
            sub_exceptions = _safe_get_exceptions(exception)

        if sub_exceptions:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception with {len(sub_exceptions)} "
                    f"sub-exceptions: {safe_exception_str}",
                )
            except Exception:
                pass
            for i, sub_exc in enumerate(sub_exceptions):
                try:
                    logger.log(
                        level,
                        f"{safe_prefix} Sub-exception {i+1}: {_describe(sub_exc)}",
                        exc_info=sub_exc,
                    )
                except Exception:
                    try:
                        logger.log(
                            level, f"{safe_prefix} Sub-exception {i+1}: (logging failed)"
                        )
                    except Exception:
                        continue
        else:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception: {safe_exception_str}",
                    exc_info=exception if exception is not None else False,
                )
            except Exception:
                try:
                    logger.log(level, f"{safe_prefix} Exception: {safe_exception_str}")
                except Exception:
                    pass

        if exception is not None:
            for depth, cause in enumerate(_cause_chain(exception), start=1):
                try:
                    logger.log(
                        level, f"{safe_prefix} Caused by ({depth}): {_describe(cause)}"
                    )
                except Exception:
                    break

    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including sub-exceptions and the innermost
    cause. Never throws.
    """
    try:
        if exception is None:
            return "None"

        message = _safe_str(exception)
        sub_exceptions = []
        if hasattr(exception, "exceptions"):
            sub_exceptions = _safe_get_exceptions(exception)
        if sub_exceptions:
            joined = "; ".join(_describe(sub_exc) for sub_exc in sub_exceptions)
            message = f"{message} (Sub-exceptions: {joined})"

        causes = _cause_chain(exception)
        if causes:
            message = f"{message} (Caused by {_describe(causes[-1])})"
        return message

    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"
