"""Tests for order_tracking.orders."""
