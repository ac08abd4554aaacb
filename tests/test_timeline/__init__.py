"""Tests for order_tracking.timeline."""
