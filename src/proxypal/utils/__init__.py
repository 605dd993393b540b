"""Shared utilities for proxypal."""
