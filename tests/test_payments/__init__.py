"""Tests for order_tracking.payments."""
