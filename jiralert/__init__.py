"""JIRAlert: Prometheus Alertmanager webhook receiver that files issues in Jira."""

__version__ = "1.0.0"
