"""
Exception hierarchy for the relevance engine.

Lower layers raise these; the analyzer catches them at every collaborator
boundary and switches to its fallback path, so none of them reach the caller
of RelevanceAnalyzer.analyze().
"""


class RelevanceEngineError(Exception):
    """Base class for all relevance engine errors."""


class SearchError(RelevanceEngineError):
    """A search backend failed (bad exit status, unparsable output, timeout)."""


class SearchUnavailableError(SearchError):
    """The external search utility is not installed or cannot be started."""


class OracleError(RelevanceEngineError):
    """The relevance oracle could not produce a usable answer."""


class OracleUnavailableError(OracleError):
    """The oracle is disabled, unconfigured, unreachable or timed out."""


class OracleResponseError(OracleError):
    """The oracle answered, but not with valid JSON of the expected shape."""


class FileAccessError(RelevanceEngineError):
    """A workspace file could not be stat'ed or read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason
