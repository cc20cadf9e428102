"""External integration health checks."""

from .checks import IntegrationCheckResult, check_durable_cache, check_model_service, run_all_checks

__all__ = ["IntegrationCheckResult", "check_durable_cache", "check_model_service", "run_all_checks"]
