"""Data preprocessing utilities for the named-entity recognition task.

The corpus is a CoNLL-2003 style text file: one ``token _ _ TAG`` record
per line, a blank line between sentences and ``-DOCSTART-`` lines
between documents.  Words are represented by pretrained GloVe style
vectors, served as one ``token v1 ... vD`` line per word.

The model is a token-level classifier, so sentences are only used while
parsing: :func:`encode` flattens them into one feature row and one
one-hot label row per token.  :func:`get_datasets` wires everything
together from the ``task`` section of the configuration.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import torch

from ...config import require
from ...exceptions import CorpusParseError, EmbeddingParseError, LabelError
from ...transport.http import fetch_text

logger = logging.getLogger(__name__)

DOCUMENT_MARKER = "-DOCSTART"
UNKNOWN_TOKEN = "UNKNOWN_TOKEN"
TAG_PREFIXES = ("I-", "B-")
MIN_FIELDS = 4

# First-seen order of the bare tags in the CoNLL-2003 English training split.
CONLL_LABELS = ("ORG", "O", "MISC", "PER", "LOC")

Sentence = List[Tuple[str, str]]


def normalize_tag(tag: str) -> str:
    """Strip a leading ``I-`` or ``B-`` so both schemes share one category."""
    if tag.startswith(TAG_PREFIXES):
        return tag[2:]
    return tag


def parse_corpus(text: str, min_fields: int = MIN_FIELDS) -> List[Sentence]:
    """Split a tagged corpus into sentences of ``(token, bare tag)`` pairs.

    Only the first (token) and last (tag) fields of a record are used.
    Lines containing the document marker are skipped and do not end
    the current sentence.  Records with fewer than ``min_fields``
    fields (four for CoNLL-2003) raise :class:`CorpusParseError`.
    """
    sentences: List[Sentence] = [[]]
    for line_number, line in enumerate(text.split("\n"), 1):
        line = line.rstrip("\r")
        if DOCUMENT_MARKER in line:
            continue
        if not line:
            sentences.append([])
            continue
        fields = line.split(" ")
        if len(fields) < max(min_fields, 2):
            raise CorpusParseError(line_number, line)
        sentences[-1].append((fields[0], normalize_tag(fields[-1])))
    return [sentence for sentence in sentences if sentence]


@dataclass(frozen=True)
class LabelVocabulary:
    """Immutable bijection between bare tags and dense indices ``0..n-1``."""

    labels: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(set(self.labels)) != len(self.labels):
            raise ValueError(f"Duplicate labels in vocabulary: {list(self.labels)}")
        object.__setattr__(self, "_index", {label: i for i, label in enumerate(self.labels)})

    @classmethod
    def from_labels(cls, labels: Iterable[str]) -> "LabelVocabulary":
        return cls(tuple(labels))

    def __len__(self) -> int:
        return len(self.labels)

    def __contains__(self, label: object) -> bool:
        return label in self._index

    def index_of(self, label: str) -> int:
        try:
            return self._index[label]
        except KeyError:
            raise LabelError(f"Label {label!r} is not in the vocabulary {list(self.labels)}") from None

    def label_of(self, index: int) -> str:
        if not 0 <= index < len(self.labels):
            raise LabelError(f"Label index {index} outside 0..{len(self.labels) - 1}")
        return self.labels[index]

    def to_dict(self) -> Dict[str, int]:
        """Forward mapping ``label -> index``."""
        return dict(self._index)

    def inverse(self) -> Dict[int, str]:
        """Inverse mapping ``index -> label``."""
        return dict(enumerate(self.labels))


def build_vocabulary(sentences: Iterable[Sentence]) -> LabelVocabulary:
    """Enumerate the distinct tags in first-seen order (sentence by sentence, token by token)."""
    seen: Dict[str, None] = {}
    for sentence in sentences:
        for _, tag in sentence:
            seen.setdefault(tag, None)
    return LabelVocabulary(tuple(seen))


class EmbeddingTable:
    """Case-insensitive word vectors with a zero ``UNKNOWN_TOKEN`` fallback."""

    def __init__(self, dim: int) -> None:
        if dim < 1:
            raise ValueError("Embedding dimension must be positive")
        self.dim = dim
        self.unknown = np.zeros(dim, dtype=np.float32)
        self._vectors: Dict[str, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, token: str) -> bool:
        return token.lower() in self._vectors

    def add(self, token: str, vector: Sequence[float]) -> None:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape != (self.dim,):
            raise EmbeddingParseError(
                f"Vector for {token!r} has {array.size} values, expected {self.dim}"
            )
        self._vectors[token.lower()] = array

    def get(self, token: str) -> Optional[np.ndarray]:
        """Return the vector of ``token`` or ``None`` when it has none."""
        return self._vectors.get(token.lower())

    def lookup(self, token: str) -> np.ndarray:
        """Return the vector of ``token``, or the unknown vector on a miss."""
        return self._vectors.get(token.lower(), self.unknown)


def parse_embeddings(text: str, dim: int) -> EmbeddingTable:
    """Build an :class:`EmbeddingTable` from ``token v1 ... vD`` lines."""
    table = EmbeddingTable(dim)
    for line_number, line in enumerate(text.split("\n"), 1):
        fields = line.split()
        if not fields:
            continue
        token, values = fields[0], fields[1:]
        try:
            vector = [float(value) for value in values]
        except ValueError as exc:
            raise EmbeddingParseError(f"Non-numeric value on embedding line {line_number}: {exc}") from exc
        if len(vector) != dim:
            raise EmbeddingParseError(
                f"Embedding line {line_number} has {len(vector)} values, expected {dim}"
            )
        table.add(token, vector)
    logger.info("Loaded %d word vectors of dimension %d", len(table), dim)
    return table


@dataclass
class EncodedDataset:
    """Row-aligned feature and one-hot label matrices.

    ``features`` is ``(N, embedding_dim)`` and ``labels`` is
    ``(N, num_classes)``; row ``i`` of both describes the same token.
    """

    features: torch.Tensor
    labels: torch.Tensor
    num_known: int = 0
    num_unknown: int = 0

    def __post_init__(self) -> None:
        if self.features.shape[0] != self.labels.shape[0]:
            raise ValueError(
                f"Row count mismatch: {self.features.shape[0]} features vs {self.labels.shape[0]} labels"
            )

    def __len__(self) -> int:
        return int(self.features.shape[0])

    @property
    def num_classes(self) -> int:
        return int(self.labels.shape[1])

    def gather(self, indices: Sequence[int]) -> Tuple[torch.Tensor, torch.Tensor]:
        """Materialize the rows in ``indices`` as a new feature/label pair."""
        index = torch.as_tensor(indices, dtype=torch.long)
        return self.features.index_select(0, index), self.labels.index_select(0, index)

    def label_indices(self) -> torch.Tensor:
        return self.labels.argmax(dim=1)


def encode(
    sentences: Iterable[Sentence],
    table: EmbeddingTable,
    vocabulary: LabelVocabulary,
    exclude_label: Optional[str] = None,
) -> EncodedDataset:
    """Encode sentences into an :class:`EncodedDataset`.

    Sentence boundaries are discarded.  Tokens tagged ``exclude_label``
    are dropped when it is given.  Every retained tag must be in
    ``vocabulary``.
    """
    rows: List[np.ndarray] = []
    targets: List[int] = []
    num_known = 0
    for sentence in sentences:
        for token, tag in sentence:
            if exclude_label is not None and tag == exclude_label:
                continue
            targets.append(vocabulary.index_of(tag))
            vector = table.get(token)
            if vector is None:
                rows.append(table.unknown)
            else:
                rows.append(vector)
                num_known += 1

    num_unknown = len(rows) - num_known
    logger.info("Encoded %d tokens: %d with embeddings, %d unknown", len(rows), num_known, num_unknown)

    if rows:
        features = torch.from_numpy(np.stack(rows).astype(np.float32, copy=False))
    else:
        features = torch.zeros((0, table.dim), dtype=torch.float32)
    labels = torch.zeros((len(targets), len(vocabulary)), dtype=torch.float32)
    if targets:
        labels[torch.arange(len(targets)), torch.as_tensor(targets, dtype=torch.long)] = 1.0
    return EncodedDataset(features=features, labels=labels, num_known=num_known, num_unknown=num_unknown)


def make_batches(
    dataset_size: int,
    batch_size: int,
    shuffle: bool = True,
    drop_last: bool = False,
    generator: Optional[torch.Generator] = None,
) -> List[List[int]]:
    """Split ``range(dataset_size)`` into lists of row indices.

    With ``shuffle`` the rows are drawn from a uniform permutation;
    call again at the start of every epoch for a fresh one.  The final
    batch may be short unless ``drop_last`` is set, in which case the
    trailing partial batch is not yielded at all.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be a positive integer")
    if shuffle:
        order = torch.randperm(dataset_size, generator=generator).tolist()
    else:
        order = list(range(dataset_size))
    num_batches = dataset_size // batch_size if drop_last else math.ceil(dataset_size / batch_size)
    return [order[i * batch_size : (i + 1) * batch_size] for i in range(num_batches)]


@dataclass
class TaskData:
    """Everything the training session needs from preprocessing."""

    vocabulary: LabelVocabulary
    train: EncodedDataset
    test: Optional[EncodedDataset] = None


def resolve_vocabulary(
    task_cfg: Dict[str, Any], sentences: Iterable[Sentence], exclude_label: Optional[str] = None
) -> LabelVocabulary:
    """Use the fixed ``task.labels`` when configured, else derive from ``sentences``.

    A derived vocabulary leaves out ``exclude_label``.
    """
    labels = task_cfg.get("labels")
    if labels:
        return LabelVocabulary.from_labels(labels)
    derived = build_vocabulary(sentences)
    if exclude_label is None or exclude_label not in derived:
        return derived
    return LabelVocabulary(tuple(label for label in derived.labels if label != exclude_label))


def get_datasets(cfg: Dict[str, Any]) -> TaskData:
    """Fetch, parse and encode the corpora named in ``cfg['task']``.

    Configuration keys under ``task``:
      - ``corpus_url``: training corpus (required).
      - ``test_corpus_url``: optional held-out corpus, encoded with the
        same vocabulary and embeddings.
      - ``embeddings_url``: word vectors (required).
      - ``embedding_dim``: vector dimensionality (default: 50).
      - ``labels``: fixed label order; derived from the training corpus
        when absent.
      - ``entities_only`` / ``outside_label``: drop tokens tagged with
        the no-entity category (default label ``O``).
      - ``min_fields``: minimum fields per corpus record (default: 4).
    """
    task_cfg = cfg.get("task") or {}
    corpus_url = require(cfg, "task", "corpus_url")
    embeddings_url = require(cfg, "task", "embeddings_url")
    dim = int(task_cfg.get("embedding_dim", 50))
    timeout = float(task_cfg.get("fetch_timeout", 60.0))
    min_fields = int(task_cfg.get("min_fields", MIN_FIELDS))
    exclude_label = task_cfg.get("outside_label", "O") if task_cfg.get("entities_only") else None

    train_sentences = parse_corpus(fetch_text(corpus_url, timeout=timeout), min_fields)
    vocabulary = resolve_vocabulary(task_cfg, train_sentences, exclude_label)
    logger.info("Parsed %d sentences; labels %s", len(train_sentences), vocabulary.to_dict())

    table = parse_embeddings(fetch_text(embeddings_url, timeout=timeout), dim)
    train = encode(train_sentences, table, vocabulary, exclude_label=exclude_label)

    test = None
    test_url = task_cfg.get("test_corpus_url")
    if test_url:
        test_sentences = parse_corpus(fetch_text(test_url, timeout=timeout), min_fields)
        test = encode(test_sentences, table, vocabulary, exclude_label=exclude_label)

    return TaskData(vocabulary=vocabulary, train=train, test=test)


__all__ = [
    "CONLL_LABELS",
    "DOCUMENT_MARKER",
    "UNKNOWN_TOKEN",
    "Sentence",
    "normalize_tag",
    "parse_corpus",
    "LabelVocabulary",
    "build_vocabulary",
    "EmbeddingTable",
    "parse_embeddings",
    "EncodedDataset",
    "encode",
    "make_batches",
    "TaskData",
    "resolve_vocabulary",
    "get_datasets",
]
