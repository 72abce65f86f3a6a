import pytest

from fakes import make_sentences
from shared.helper.TextChunker import TextChunker


def _sentence_numbers(text: str) -> list[int]:
    return [int(part.split()[0]) for part in text.split("sentence ")[1:]]


class TestTextChunker:
    def test_blank_text_yields_no_chunks(self):
        chunker = TextChunker()
        assert chunker.chunk("", "doc1") == []
        assert chunker.chunk("  \n\t  ", "doc1") == []

    def test_short_text_is_a_single_chunk(self):
        chunks = TextChunker().chunk("Hello world. This is short!", "doc1")
        assert len(chunks) == 1
        assert chunks[0].text == "Hello world. This is short!"
        assert chunks[0].index == 0
        assert chunks[0].id == "doc1-chunk-0"

    def test_whitespace_is_normalized(self):
        chunks = TextChunker().chunk("Hello   world.\n\nNext\tline!  ", "doc1")
        assert chunks[0].text == "Hello world. Next line!"

    def test_split_sentences_on_terminal_punctuation(self):
        assert TextChunker.split_sentences("One. Two! Three? Four") == ["One.", "Two!", "Three?", "Four"]

    def test_eighty_sentences_make_four_overlapping_chunks(self):
        text = make_sentences(80)
        chunks = TextChunker(chunk_size=1000, chunk_overlap=200).chunk(text, "doc42")

        assert [c.id for c in chunks] == [f"doc42-chunk-{i}" for i in range(4)]
        assert [c.index for c in chunks] == [0, 1, 2, 3]
        assert _sentence_numbers(chunks[0].text) == list(range(1, 26))
        assert _sentence_numbers(chunks[1].text) == list(range(21, 46))
        assert _sentence_numbers(chunks[2].text) == list(range(41, 66))
        assert _sentence_numbers(chunks[3].text) == list(range(61, 81))

    def test_consecutive_chunks_share_the_overlap(self):
        chunks = TextChunker(chunk_size=1000, chunk_overlap=200).chunk(make_sentences(80), "doc42")
        for previous, current in zip(chunks, chunks[1:]):
            assert current.text.startswith(previous.text[-200:])

    @pytest.mark.parametrize("overlap", [1, 37, 200, 333])
    def test_overlap_carries_exactly_the_configured_characters(self, overlap):
        chunks = TextChunker(chunk_size=1000, chunk_overlap=overlap).chunk(make_sentences(80), "doc42")
        assert len(chunks) > 1
        for previous, current in zip(chunks, chunks[1:]):
            assert current.text[:overlap] == previous.text[-overlap:]

    def test_chunks_stay_within_size_when_sentences_fit(self):
        chunks = TextChunker(chunk_size=1000, chunk_overlap=200).chunk(make_sentences(80), "doc42")
        assert all(len(c.text) <= 1000 for c in chunks)

    def test_chunking_is_deterministic(self):
        text = make_sentences(80, keyword_at=50)
        chunker = TextChunker()
        assert chunker.chunk(text, "doc42") == chunker.chunk(text, "doc42")

    def test_oversized_sentence_is_kept_whole(self):
        sentence = "x" * 1500 + "."
        chunks = TextChunker(chunk_size=1000, chunk_overlap=200).chunk(sentence, "doc1")
        assert len(chunks) == 1
        assert chunks[0].text == sentence

    def test_no_chunk_holds_only_overlap(self):
        first = "a" * 899 + "."
        second = "b" * 1499 + "."
        chunks = TextChunker(chunk_size=1000, chunk_overlap=200).chunk(f"{first} {second}", "doc1")

        assert len(chunks) == 2
        assert chunks[0].text == first
        assert chunks[1].text.endswith(second)
        assert chunks[1].text.startswith(first[-200:])

    def test_zero_overlap_starts_fresh(self):
        chunks = TextChunker(chunk_size=100, chunk_overlap=0).chunk(make_sentences(10), "doc1")
        assert len(chunks) > 1
        numbers = [n for c in chunks for n in _sentence_numbers(c.text)]
        assert numbers == list(range(1, 11))

    @pytest.mark.parametrize("size, overlap", [(0, 0), (100, 100), (100, -1)])
    def test_invalid_sizes_are_rejected(self, size, overlap):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=size, chunk_overlap=overlap)

    def test_from_config_reads_environment(self, monkeypatch, helper_config):
        monkeypatch.setenv("CHUNK_SIZE", "500")
        monkeypatch.setenv("CHUNK_OVERLAP", "50")
        chunker = TextChunker.from_config(helper_config)
        assert (chunker.chunk_size, chunker.chunk_overlap) == (500, 50)
