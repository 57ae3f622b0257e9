"""Exceptions shared across the federated NER worker.

- ConfigError         : missing or invalid configuration values
- FetchError          : corpus / embedding download failed
- CorpusParseError    : malformed line in a tagged corpus
- EmbeddingParseError : malformed line in an embedding table
- LabelError          : label outside the vocabulary
- CoordinatorError    : the coordinator failed or answered nonsense
"""


class FedNerError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(FedNerError, ValueError):
    """Configuration file or value problem."""


class FetchError(FedNerError, IOError):
    """An HTTP resource (corpus, embeddings) could not be fetched."""


class CorpusParseError(FedNerError, ValueError):
    """A corpus record has too few fields."""

    def __init__(self, line_number: int, line: str) -> None:
        super().__init__(f"Malformed corpus line {line_number}: {line!r}")
        self.line_number = line_number
        self.line = line


class EmbeddingParseError(FedNerError, ValueError):
    """An embedding record has the wrong dimensionality."""


class LabelError(FedNerError, KeyError):
    """Label or label index not present in the vocabulary."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CoordinatorError(FedNerError, RuntimeError):
    """The coordination server reported a failure."""
