"""Tests for order_tracking.tracking."""
