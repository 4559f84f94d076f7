"""
Unit tests for the contention retry delay policy.
"""

import pytest

from shared.retry import RetryConfig, calculate_delay


class TestCalculateDelay:
    """Test cases for calculate_delay."""

    def test_fixed_delay(self):
        """Test the default policy waits the same time on every retry."""
        config = RetryConfig()

        assert [calculate_delay(attempt, config) for attempt in (1, 2, 3, 4)] == [0.02] * 4

    def test_linear_delay(self):
        config = RetryConfig(base_delay=0.01, backoff_strategy="linear")

        assert calculate_delay(3, config) == pytest.approx(0.03)

    def test_exponential_delay_is_capped(self):
        """Test exponential backoff stops growing at max_delay."""
        config = RetryConfig(base_delay=0.1, max_delay=0.5, backoff_strategy="exponential")

        assert calculate_delay(1, config) == pytest.approx(0.1)
        assert calculate_delay(3, config) == pytest.approx(0.4)
        assert calculate_delay(10, config) == pytest.approx(0.5)

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=0.1, jitter=True)

        for _ in range(50):
            assert 0.09 <= calculate_delay(1, config) <= 0.11
