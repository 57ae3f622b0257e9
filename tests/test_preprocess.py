import unittest
from unittest import mock

import numpy as np
import torch

from fedner.exceptions import CorpusParseError, EmbeddingParseError, FetchError, LabelError
from fedner.task import load_task
from fedner.task.ner.preprocess import (
    EmbeddingTable,
    LabelVocabulary,
    build_vocabulary,
    encode,
    get_datasets,
    make_batches,
    normalize_tag,
    parse_corpus,
    parse_embeddings,
    resolve_vocabulary,
)

CORPUS = (
    "-DOCSTART- -X- -X- O\n"
    "\n"
    "EU NNP B-NP B-ORG\n"
    "rejects VBZ B-VP O\n"
    "German JJ B-NP B-MISC\n"
    "\n"
    "Peter NNP B-NP B-PER\n"
    "Blackburn NNP I-NP I-PER\n"
    "\n"
    "\n"
    "BRUSSELS NNP B-NP B-LOC\n"
    "-DOCSTART- -X- -X- O\n"
    "1996-08-22 CD I-NP O\n"
)


class TestParseCorpus(unittest.TestCase):
    def test_sentence_groups(self):
        sentences = parse_corpus(CORPUS)
        # Empty groups and document markers do not produce sentences.
        self.assertEqual(len(sentences), 3)
        self.assertEqual(sentences[0], [("EU", "ORG"), ("rejects", "O"), ("German", "MISC")])
        self.assertEqual(sentences[1], [("Peter", "PER"), ("Blackburn", "PER")])

    def test_document_marker_does_not_end_sentence(self):
        sentences = parse_corpus(CORPUS)
        self.assertEqual(sentences[2], [("BRUSSELS", "LOC"), ("1996-08-22", "O")])

    def test_malformed_line_is_fatal(self):
        with self.assertRaises(CorpusParseError) as ctx:
            parse_corpus("EU NNP B-NP B-ORG\nrejects O\n")
        self.assertEqual(ctx.exception.line_number, 2)

    def test_min_fields_override(self):
        sentences = parse_corpus("Paris B-LOC\n\nLondon B-LOC", min_fields=2)
        self.assertEqual(sentences, [[("Paris", "LOC")], [("London", "LOC")]])

    def test_carriage_returns(self):
        sentences = parse_corpus("EU NNP B-NP B-ORG\r\n\r\nPeter NNP B-NP B-PER\r\n")
        self.assertEqual(sentences, [[("EU", "ORG")], [("Peter", "PER")]])

    def test_empty_text(self):
        self.assertEqual(parse_corpus(""), [])


class TestNormalizeTag(unittest.TestCase):
    def test_prefixes(self):
        self.assertEqual(normalize_tag("B-LOC"), "LOC")
        self.assertEqual(normalize_tag("I-PER"), "PER")
        self.assertEqual(normalize_tag("O"), "O")

    def test_idempotent(self):
        for tag in ("LOC", "MISC", "O", "B-ORG"):
            once = normalize_tag(tag)
            self.assertEqual(normalize_tag(once), once)


class TestVocabulary(unittest.TestCase):
    def test_first_seen_order(self):
        vocabulary = build_vocabulary(parse_corpus(CORPUS))
        self.assertEqual(vocabulary.labels, ("ORG", "O", "MISC", "PER", "LOC"))

    def test_mappings_are_inverse(self):
        vocabulary = build_vocabulary(parse_corpus(CORPUS))
        forward = vocabulary.to_dict()
        inverse = vocabulary.inverse()
        self.assertEqual(sorted(forward.values()), list(range(len(vocabulary))))
        for label, index in forward.items():
            self.assertEqual(inverse[index], label)
            self.assertEqual(vocabulary.label_of(vocabulary.index_of(label)), label)

    def test_unknown_label(self):
        vocabulary = LabelVocabulary.from_labels(["LOC"])
        with self.assertRaises(LabelError):
            vocabulary.index_of("PER")
        with self.assertRaises(LabelError):
            vocabulary.label_of(1)

    def test_duplicates_rejected(self):
        with self.assertRaises(ValueError):
            LabelVocabulary.from_labels(["LOC", "LOC"])

    def test_fixed_labels_win(self):
        vocabulary = resolve_vocabulary({"labels": ["PER", "LOC"]}, parse_corpus(CORPUS))
        self.assertEqual(vocabulary.labels, ("PER", "LOC"))

    def test_derived_without_outside_label(self):
        vocabulary = resolve_vocabulary({}, parse_corpus(CORPUS), exclude_label="O")
        self.assertEqual(vocabulary.labels, ("ORG", "MISC", "PER", "LOC"))


class TestEmbeddings(unittest.TestCase):
    def test_parse_lowercases_and_skips_blank_lines(self):
        table = parse_embeddings("Paris 1 0\n\nlondon 0 1\n", dim=2)
        self.assertEqual(len(table), 2)
        self.assertIn("paris", table)
        np.testing.assert_array_equal(table.lookup("PARIS"), [1.0, 0.0])

    def test_unknown_fallback(self):
        table = parse_embeddings("paris 1 0\n", dim=2)
        np.testing.assert_array_equal(table.lookup("Berlin"), np.zeros(2))
        np.testing.assert_array_equal(table.lookup("UNKNOWN_TOKEN"), np.zeros(2))
        self.assertIsNone(table.get("Berlin"))

    def test_wrong_dimension(self):
        with self.assertRaises(EmbeddingParseError):
            parse_embeddings("paris 1 0 3\n", dim=2)
        with self.assertRaises(EmbeddingParseError):
            EmbeddingTable(2).add("paris", [1.0])

    def test_non_numeric(self):
        with self.assertRaises(EmbeddingParseError):
            parse_embeddings("paris 1 x\n", dim=2)


class TestEncode(unittest.TestCase):
    def test_end_to_end_scenario(self):
        sentences = parse_corpus("Paris B-LOC\n\nLondon B-LOC", min_fields=2)
        table = parse_embeddings("paris 1 0\nlondon 0 1\n", dim=2)
        vocabulary = LabelVocabulary.from_labels(["LOC"])

        dataset = encode(sentences, table, vocabulary)

        self.assertTrue(torch.equal(dataset.features, torch.tensor([[1.0, 0.0], [0.0, 1.0]])))
        self.assertTrue(torch.equal(dataset.labels, torch.tensor([[1.0], [1.0]])))

    def test_case_insensitive_and_unknown(self):
        sentences = [[("Paris", "LOC"), ("paris", "LOC"), ("Berlin", "LOC")]]
        table = parse_embeddings("paris 1 2\n", dim=2)
        dataset = encode(sentences, table, LabelVocabulary.from_labels(["LOC"]))

        self.assertTrue(torch.equal(dataset.features[0], dataset.features[1]))
        self.assertTrue(torch.equal(dataset.features[2], torch.zeros(2)))
        self.assertEqual(dataset.num_known, 2)
        self.assertEqual(dataset.num_unknown, 1)

    def test_row_counts_with_filter(self):
        sentences = parse_corpus(CORPUS)
        table = parse_embeddings("eu 1 1\n", dim=2)
        vocabulary = build_vocabulary(sentences)

        full = encode(sentences, table, vocabulary)
        entities = encode(sentences, table, vocabulary, exclude_label="O")

        self.assertEqual(len(full), 7)
        self.assertEqual(full.labels.shape, (7, 5))
        self.assertEqual(len(entities), 5)
        self.assertEqual(entities.features.shape[0], entities.labels.shape[0])
        self.assertEqual(entities.label_indices().tolist(), [0, 2, 3, 3, 4])
        self.assertTrue(torch.equal(full.labels.sum(dim=1), torch.ones(7)))

    def test_empty_corpus(self):
        dataset = encode([], EmbeddingTable(3), LabelVocabulary.from_labels(["LOC", "O"]))
        self.assertEqual(dataset.features.shape, (0, 3))
        self.assertEqual(dataset.labels.shape, (0, 2))
        self.assertEqual(len(dataset), 0)

    def test_label_outside_vocabulary(self):
        with self.assertRaises(LabelError):
            encode([[("Paris", "LOC")]], EmbeddingTable(2), LabelVocabulary.from_labels(["PER"]))

    def test_gather(self):
        sentences = [[("a", "X"), ("b", "Y"), ("c", "X")]]
        table = parse_embeddings("a 1\nb 2\nc 3\n", dim=1)
        dataset = encode(sentences, table, build_vocabulary(sentences))
        features, labels = dataset.gather([2, 0])
        self.assertEqual(features.tolist(), [[3.0], [1.0]])
        self.assertEqual(labels.tolist(), [[1.0, 0.0], [1.0, 0.0]])


class TestMakeBatches(unittest.TestCase):
    def test_keep_short(self):
        batches = make_batches(1000, 300, shuffle=False)
        self.assertEqual([len(b) for b in batches], [300, 300, 300, 100])
        self.assertEqual(batches[0][:3], [0, 1, 2])
        self.assertEqual(batches[-1][-1], 999)

    def test_drop_short(self):
        batches = make_batches(1000, 300, shuffle=False, drop_last=True)
        self.assertEqual([len(b) for b in batches], [300, 300, 300])
        self.assertNotIn(999, [i for b in batches for i in b])

    def test_shuffled_is_permutation(self):
        generator = torch.Generator()
        generator.manual_seed(0)
        batches = make_batches(1000, 300, generator=generator)
        flat = [i for b in batches for i in b]
        self.assertEqual(sorted(flat), list(range(1000)))
        self.assertEqual([len(b) for b in batches], [300, 300, 300, 100])

    def test_seeded_order_is_reproducible(self):
        first = make_batches(50, 7, generator=torch.Generator().manual_seed(3))
        second = make_batches(50, 7, generator=torch.Generator().manual_seed(3))
        self.assertEqual(first, second)

    def test_empty_and_invalid(self):
        self.assertEqual(make_batches(0, 10), [])
        self.assertEqual(make_batches(5, 10, drop_last=True), [])
        with self.assertRaises(ValueError):
            make_batches(10, 0)

TEST_CORPUS = "Peter NNP B-NP B-PER\nvisits VBZ B-VP O\nBrussels NNP B-NP B-LOC\n"

TEXTS = {
    "http://data/eng.train.txt": CORPUS,
    "http://data/eng.testa.txt": TEST_CORPUS,
    "http://data/glove.txt": "peter 1 0\nbrussels 0 1\n",
}


def fake_fetch_text(url, timeout=60.0):
    if url not in TEXTS:
        raise FetchError(f"Could not fetch {url}")
    return TEXTS[url]


def task_config(**task):
    cfg = {
        "task": {
            "name": "ner",
            "corpus_url": "http://data/eng.train.txt",
            "test_corpus_url": "http://data/eng.testa.txt",
            "embeddings_url": "http://data/glove.txt",
            "embedding_dim": 2,
        }
    }
    cfg["task"].update(task)
    return cfg


class TestGetDatasets(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("fedner.task.ner.preprocess.fetch_text", side_effect=fake_fetch_text)
        self.fetch = patcher.start()
        self.addCleanup(patcher.stop)

    def test_splits_share_vocabulary_and_embeddings(self):
        data = get_datasets(task_config())

        self.assertEqual(data.vocabulary.labels, ("ORG", "O", "MISC", "PER", "LOC"))
        self.assertEqual(data.train.num_classes, len(data.vocabulary))
        self.assertEqual(data.test.num_classes, len(data.vocabulary))
        self.assertEqual(len(data.train), 7)
        self.assertEqual(len(data.test), 3)
        # Peter and BRUSSELS resolve to the same vectors in both splits.
        self.assertTrue(torch.equal(data.train.features[3], data.test.features[0]))
        self.assertTrue(torch.equal(data.train.features[5], data.test.features[2]))
        self.assertEqual(data.test.label_indices().tolist(), [3, 1, 4])
        embedding_fetches = [c for c in self.fetch.call_args_list if c.args[0] == "http://data/glove.txt"]
        self.assertEqual(len(embedding_fetches), 1)

    def test_entities_only_filters_both_splits(self):
        data = get_datasets(task_config(entities_only=True))

        self.assertEqual(data.vocabulary.labels, ("ORG", "MISC", "PER", "LOC"))
        self.assertEqual(data.train.label_indices().tolist(), [0, 1, 2, 2, 3])
        self.assertEqual(data.test.label_indices().tolist(), [2, 3])
        self.assertEqual(data.test.features.tolist(), [[1.0, 0.0], [0.0, 1.0]])

    def test_fixed_labels_and_no_test_split(self):
        data = get_datasets(task_config(test_corpus_url=None, labels=["LOC", "O", "PER", "ORG", "MISC"]))
        self.assertEqual(data.vocabulary.labels, ("LOC", "O", "PER", "ORG", "MISC"))
        self.assertIsNone(data.test)

    def test_min_fields_from_config(self):
        TEXTS["http://data/short.txt"] = "Paris B-LOC\n\nLondon B-LOC"
        self.addCleanup(TEXTS.pop, "http://data/short.txt")
        cfg = task_config(corpus_url="http://data/short.txt", test_corpus_url=None)

        with self.assertRaises(CorpusParseError):
            get_datasets(cfg)
        cfg["task"]["min_fields"] = 2
        self.assertEqual(len(get_datasets(cfg).train), 2)

    def test_fetch_failure_propagates(self):
        with self.assertRaises(FetchError):
            get_datasets(task_config(test_corpus_url="http://data/missing.txt"))

    def test_load_task(self):
        components = load_task(task_config(entities_only=True))
        data = components["data"]
        logits = components["model"](data.train.features)
        self.assertEqual(tuple(logits.shape), (5, 4))
        self.assertTrue(hasattr(components["metrics"], "compute_metrics"))



if __name__ == "__main__":
    unittest.main()
