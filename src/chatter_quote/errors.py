"""Failure types raised by the quote engine and its collaborators."""


class ChatterQuoteError(Exception):
    """Base class for chatter-quote failures."""


class NoEligibleQuotes(ChatterQuoteError):
    """A schedule's tags currently match no quotes."""


class StoreUnavailable(ChatterQuoteError):
    """A read or write against the quote/schedule/tracking store failed."""


class DeliveryFailure(ChatterQuoteError):
    """The delivery channel could not transmit a message."""


class JobSchedulingFailure(ChatterQuoteError):
    """The job scheduler rejected a create, update or delete."""
