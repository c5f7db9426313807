"""
Shared loop for the escrow sweeps.

Each sweep selects a bounded batch of payment ids and applies one ledger
operation per id. A failure is logged and collected, and the loop moves
on to the next payment.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def run_sweep(
    name: str,
    payment_ids: Iterable,
    operation: Callable[[Any], Any],
) -> dict[str, Any]:
    """
    Apply ``operation`` to every id.

    Returns:
        Dict with:
        - processed: Number of payments the operation returned for
        - errors: One dict per failed payment (payment_id, error_code, error)
    """
    processed = 0
    errors: list[dict[str, str]] = []

    for payment_id in payment_ids:
        try:
            operation(payment_id)
            processed += 1
        except BaseApplicationError as e:
            logger.warning(
                f"{name}: payment skipped",
                extra={"payment_id": str(payment_id), "error_code": e.error_code, "error": e.message},
            )
            errors.append({"payment_id": str(payment_id), "error_code": e.error_code, "error": e.message})
        except Exception as e:
            logger.error(
                f"{name}: unexpected error",
                extra={"payment_id": str(payment_id)},
                exc_info=True,
            )
            errors.append({"payment_id": str(payment_id), "error_code": type(e).__name__, "error": str(e)})

    logger.info(
        f"{name} complete: {processed} processed, {len(errors)} errors",
        extra={"sweep": name, "processed": processed, "error_count": len(errors)},
    )
    return {"processed": processed, "errors": errors}
