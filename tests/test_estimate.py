"""Tests for scan cost estimation."""

import pytest

from session_tagger.estimate import estimate_scan_cost


class TestEstimateScanCost:
    def test_hundred_sessions(self):
        """Test the default projection for 100 sessions."""
        estimate = estimate_scan_cost(100)
        assert estimate.total_sessions == 100
        assert estimate.estimated_tokens == 120000
        assert estimate.estimated_cost == pytest.approx(0.07)
        assert estimate.estimated_time_minutes == 4

    def test_zero_sessions(self):
        estimate = estimate_scan_cost(0)
        assert estimate.estimated_tokens == 0
        assert estimate.estimated_cost == 0
        assert estimate.estimated_time_minutes == 0

    def test_custom_average(self):
        estimate = estimate_scan_cost(10, avg_tokens_per_session=2000)
        assert estimate.estimated_tokens == 10 * 2000 + 10 * 400

    def test_time_rounds_up(self):
        assert estimate_scan_cost(1).estimated_time_minutes == 1

    def test_negative_count(self):
        with pytest.raises(ValueError):
            estimate_scan_cost(-1)
