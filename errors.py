from typing import Optional


class ValidationError(ValueError):
    """Malformed input, rejected before anything is written."""


class ConstraintViolation(ValueError):
    """The store refused a write (foreign key, unique key, check)."""


class NotFound(ValueError):
    pass


class NotDeletable(ValueError):
    """A virtual occurrence was targeted by a delete or an update."""


class PartialSeriesFailure(RuntimeError):
    """
    The recurring template was saved but writing its instances failed.

    The template row stays in the store; callers either retry the instance
    write (``extend_horizon``) or delete the template.
    """

    def __init__(self, template_id: str, cause: Optional[BaseException] = None):
        self.template_id = template_id
        self.cause = cause
        message = (
            f"Recurring template {template_id} was saved but its instances were not"
        )
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
