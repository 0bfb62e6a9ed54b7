"""Production configuration guard — enforces hard constraints in production.

The guard validates that production-critical settings are correctly configured
before the pipeline starts.  It runs once at construction time and fails hard
(raises ``ProductionConfigError``) if any constraint is violated.

This module is the single enforcement point for production invariants.
Other code should not scatter ``if is_production`` checks — the guard
ensures the system is in a known-good state at startup.
"""

from __future__ import annotations

import logging

from cdforge.config import ProdConfig

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    This error indicates the system cannot safely start in production mode
    with the current configuration.  It must not be caught and ignored —
    the process should exit.
    """


def enforce_production_constraints(config: ProdConfig) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. A cache buster must be set, so a poisoned cache can be invalidated
       without a source change.
    3. The chart repository must be served over HTTPS.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return  # Guard only applies in production

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set CDFORGE_DEBUG=false."
        )

    if not config.cache_buster:
        violations.append(
            "cache_buster is required in production. Set CDFORGE_CACHE_BUSTER."
        )

    if not config.chart_repo.startswith("https://"):
        violations.append(
            f"chart_repo must be an https:// URL in production, got {config.chart_repo!r}."
        )

    # Collect and report all violations at once
    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
