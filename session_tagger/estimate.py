"""Cost and time projection for bulk scans. Pure arithmetic, no network."""

import math
from typing import Optional

from .config import (
    AVG_INPUT_TOKENS_PER_SESSION,
    AVG_OUTPUT_TOKENS_PER_SESSION,
    AVG_SECONDS_PER_REQUEST,
    INPUT_COST_PER_MILLION,
    OUTPUT_COST_PER_MILLION,
)
from .models import ScanCostEstimate


def estimate_scan_cost(
    session_count: int,
    avg_tokens_per_session: Optional[int] = None,
) -> ScanCostEstimate:
    """Estimate tokens, cost (USD) and minutes to scan session_count sessions.

    Args:
        session_count: Number of sessions to scan
        avg_tokens_per_session: Average input tokens per session context

    Returns:
        ScanCostEstimate with cost rounded to cents and time rounded up
    """
    if session_count < 0:
        raise ValueError("session_count must not be negative")
    if avg_tokens_per_session is None:
        avg_tokens_per_session = AVG_INPUT_TOKENS_PER_SESSION

    total_input = session_count * avg_tokens_per_session
    total_output = session_count * AVG_OUTPUT_TOKENS_PER_SESSION

    input_cost = total_input / 1_000_000 * INPUT_COST_PER_MILLION
    output_cost = total_output / 1_000_000 * OUTPUT_COST_PER_MILLION

    return ScanCostEstimate(
        total_sessions=session_count,
        estimated_tokens=total_input + total_output,
        estimated_cost=round(input_cost + output_cost, 2),
        estimated_time_minutes=math.ceil(session_count * AVG_SECONDS_PER_REQUEST / 60),
    )
