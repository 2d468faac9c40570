"""task-conductor: stakeholder review workflow and code-generation queue."""

__version__ = "0.1.0"
