import unittest

from epub_importer import chunking


def _words(count: int) -> str:
    return " ".join(f"w{index}" for index in range(count))


class TestChunkWords(unittest.TestCase):
    def test_empty_and_whitespace_text_yield_no_fragments(self):
        self.assertEqual(chunking.chunk_words("", 5), [])
        self.assertEqual(chunking.chunk_words(" \n\t  \n", 5), [])

    def test_exact_target_yields_single_fragment(self):
        fragments = chunking.chunk_words(_words(5), 5)

        self.assertEqual(len(fragments), 1)
        self.assertEqual(fragments[0].index, 1)
        self.assertEqual(fragments[0].word_count, 5)

    def test_two_targets_plus_one_yields_short_last_fragment(self):
        fragments = chunking.chunk_words(_words(11), 5)

        self.assertEqual([fragment.word_count for fragment in fragments], [5, 5, 1])
        self.assertEqual([fragment.index for fragment in fragments], [1, 2, 3])
        self.assertEqual(fragments[2].text, "w10")

    def test_fragments_cover_words_without_overlap(self):
        text = "alpha  beta\n\ngamma\tdelta epsilon\n zeta eta"

        fragments = chunking.chunk_words(text, 3)

        self.assertEqual(
            [fragment.text for fragment in fragments],
            ["alpha beta gamma", "delta epsilon zeta", "eta"],
        )

    def test_default_target_is_1200_words(self):
        fragments = chunking.chunk_words(_words(2500))

        self.assertEqual([fragment.word_count for fragment in fragments], [1200, 1200, 100])

    def test_chunking_is_deterministic(self):
        text = _words(37)

        self.assertEqual(chunking.chunk_words(text, 4), chunking.chunk_words(text, 4))

    def test_rejects_non_positive_target(self):
        with self.assertRaises(ValueError):
            chunking.chunk_words("a b c", 0)


class TestSelectFragments(unittest.TestCase):
    def test_window_starts_at_requested_fragment(self):
        fragments = chunking.chunk_words(_words(5), 1)

        window = chunking.select_fragments(fragments, start_from=2, max_fragments=2)

        self.assertEqual(window.indices, [2, 3])
        self.assertEqual(window.total_fragments, 5)

    def test_window_beyond_available_fragments_is_empty(self):
        fragments = chunking.chunk_words(_words(1), 1)

        window = chunking.select_fragments(fragments, start_from=2, max_fragments=2)

        self.assertEqual(window.fragments, [])
        self.assertEqual(window.total_fragments, 1)

    def test_window_is_clipped_to_available_fragments(self):
        fragments = chunking.chunk_words(_words(4), 1)

        window = chunking.select_fragments(fragments, start_from=3, max_fragments=10)

        self.assertEqual(window.indices, [3, 4])

    def test_defaults_take_first_three_fragments(self):
        fragments = chunking.chunk_words(_words(10), 2)

        self.assertEqual(chunking.select_fragments(fragments).indices, [1, 2, 3])

    def test_rejects_invalid_window_parameters(self):
        with self.assertRaises(ValueError):
            chunking.select_fragments([], start_from=0)
        with self.assertRaises(ValueError):
            chunking.select_fragments([], max_fragments=0)


def test_fragment_text_combines_split_and_window():
    window = chunking.fragment_text(_words(9), target_words=3, start_from=2, max_fragments=1)

    assert window.indices == [2]
    assert window.fragments[0].text == "w3 w4 w5"


if __name__ == "__main__":
    unittest.main()
