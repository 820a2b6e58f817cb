"""Exception hierarchy for the Viewership Aggregation Pipeline."""


class AggregatorError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(AggregatorError):
    """Invalid or unreadable configuration. Fatal at startup."""


class NormalizationError(AggregatorError):
    """A fetched archive could not be turned into a Canonical File."""


class MalformedRowError(NormalizationError):
    """A CSV row does not have the expected number of columns."""


class ReportWriteError(AggregatorError):
    """The aggregated report for a day could not be written."""


class CursorExhausted(AggregatorError):
    """`pop()` was called on a cursor with no records left."""
