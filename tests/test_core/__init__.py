"""Tests for order_tracking.core."""
