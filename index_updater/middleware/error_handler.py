import logging
from typing import Any, Callable, Dict, Tuple

from index_updater.models.converger import ConvergenceReport
from index_updater.models.search_backend import BackendError
from index_updater.models.utils import ExitCode

logger = logging.getLogger(__name__)


def report_result(report: ConvergenceReport) -> Tuple[ExitCode, Dict]:
    return report.exit_code, report.to_dict()


def handle_errors(operation_type: str,
                  on_success: Callable[[Any], Tuple[ExitCode, Any]] = report_result
                  ) -> Callable[[Any], Tuple[ExitCode, Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Tuple[ExitCode, Any]]:
        def wrapper(*args, **kwargs) -> Tuple[ExitCode, Any]:
            try:
                result = func(*args, **kwargs)
            except NotImplementedError:
                logger.error(f"{func.__name__} is not implemented for {operation_type}")
                return ExitCode.FAILURE, f"{func.__name__} is not implemented for {operation_type}"
            except BackendError as e:
                logger.error(f"Search backend failed on {func.__name__} {operation_type}: {e}")
                return (ExitCode.FAILURE,
                        f"The search backend failed in an unexpected way on {func.__name__} for {operation_type}.\n"
                        f"Error type: {e.error_type or type(e).__name__}\nMessage: {e}")
            except Exception as e:
                logger.error(f"Failed to {func.__name__} {operation_type}: {e}")
                return ExitCode.FAILURE, f"Failure on {func.__name__} for {operation_type}: {type(e).__name__} {e}"
            return on_success(result)
        wrapper.__name__ = func.__name__
        return wrapper
    return decorator
