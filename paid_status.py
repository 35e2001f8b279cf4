import logging

from errors import ValidationError
from models import Transaction
from occurrences import OccurrenceRef
from recurrence import SeriesExpander


logger = logging.getLogger(__name__)


class PaidStatusTracker:
    """
    Reads and sets the paid flag of an occurrence.

    A virtual occurrence is materialized first: the template's horizon is
    extended through that month and the new instance row gets the flag.
    """

    def __init__(self, expander: SeriesExpander) -> None:
        self.expander = expander
        self.repository = expander.repository
        self.user_id = expander.user_id

    def is_paid(self, ref: OccurrenceRef) -> bool:
        return self.expander.resolve(ref).is_paid

    def set_paid(self, ref: OccurrenceRef, is_paid: bool) -> Transaction:
        occurrence = self.expander.resolve(ref)
        if occurrence.is_virtual:
            logger.info(
                f"occurrence_materialized: template_id={occurrence.origin_id} "
                f"month={occurrence.month}"
            )
            self.expander.extend_horizon(occurrence.origin, occurrence.date)
            occurrence = self.expander.resolve(ref)
        elif occurrence.transaction.is_recurring_template:
            raise ValidationError(
                "Recurring templates are never paid; pass the month to pay"
            )
        return self.repository.update_by_id(
            occurrence.id, self.user_id, {"is_paid": is_paid}
        )
