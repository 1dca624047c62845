class IntentParseError(ValueError):
    """The model's extraction reply could not be decoded into a JSON object."""


class WorkflowError(RuntimeError):
    """Raised by ``MaintenanceGraph.execute`` for anything a step did not handle itself."""
