"""Usage-to-cost estimation for image API calls.

The provider reports usage as::

    {
        "input_tokens_details": {"text_tokens": 100, "image_tokens": 50},
        "output_tokens": 25,
        ...
    }

The estimate is informational only.  It is computed per request and never
persisted; the browser keeps the running history.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostRates:
    """USD per token for each usage category."""

    text_input: float = 0.000005
    image_input: float = 0.00001
    image_output: float = 0.00004


DEFAULT_RATES = CostRates()


@dataclass(frozen=True)
class CostDetails:
    """Token breakdown and estimated cost of a single request."""

    text_input_tokens: int
    image_input_tokens: int
    image_output_tokens: int
    estimated_cost_usd: float

    def to_dict(self) -> dict:
        return {
            "text_input_tokens": self.text_input_tokens,
            "image_input_tokens": self.image_input_tokens,
            "image_output_tokens": self.image_output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def estimate_cost(usage: dict | None, rates: CostRates = DEFAULT_RATES) -> CostDetails | None:
    """Estimate the USD cost of a request from its usage record.

    Missing individual token counts count as zero.  The total is rounded
    half-up to four decimal places, so ``199`` text tokens at the default rate
    (0.000995) becomes ``0.001``.

    Args:
        usage: Usage mapping returned by the provider, or ``None``.
        rates: Per-token rates.

    Returns:
        :class:`CostDetails`, or ``None`` if the usage record is missing,
        lacks ``input_tokens_details``, or contains non-numeric counts.
    """
    if not isinstance(usage, dict) or not isinstance(usage.get("input_tokens_details"), dict):
        logger.warning(f"Invalid or missing usage data for cost calculation: {usage!r}")
        return None

    details = usage["input_tokens_details"]
    text_tokens = details.get("text_tokens", 0)
    image_tokens = details.get("image_tokens", 0)
    output_tokens = usage.get("output_tokens", 0)

    text_tokens = 0 if text_tokens is None else text_tokens
    image_tokens = 0 if image_tokens is None else image_tokens
    output_tokens = 0 if output_tokens is None else output_tokens

    if not all(_is_number(v) for v in (text_tokens, image_tokens, output_tokens)):
        logger.error(
            f"Invalid token types in usage data: text={text_tokens!r}, "
            f"image={image_tokens!r}, output={output_tokens!r}"
        )
        return None

    # Decimal arithmetic keeps 0.000995 from rounding down through float error.
    cost = (
        Decimal(str(text_tokens)) * Decimal(str(rates.text_input))
        + Decimal(str(image_tokens)) * Decimal(str(rates.image_input))
        + Decimal(str(output_tokens)) * Decimal(str(rates.image_output))
    )
    rounded = cost.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    return CostDetails(
        text_input_tokens=text_tokens,
        image_input_tokens=image_tokens,
        image_output_tokens=output_tokens,
        estimated_cost_usd=float(rounded),
    )
