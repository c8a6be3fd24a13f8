"""CLI module for gatewarden."""
