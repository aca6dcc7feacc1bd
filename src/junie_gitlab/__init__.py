"""Junie for GitLab: turns GitLab collaboration events into agent tasks."""

__version__ = "0.1.0"
