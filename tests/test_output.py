"""Tests for output destinations."""

import pytest

from hydrakit import BindingError, collect, many, one
from hydrakit.output import OutputKind, bind_outputs, resolve_outputs
from library import Author, Textbook


class TestOutputs:
    def test_one_starts_empty(self):
        output = one(Author)
        assert output.kind is OutputKind.ONE
        assert output.value is None

    def test_many_starts_with_new_list(self):
        assert many(Author).value == []
        assert many(Author).value is not many(Author).value

    def test_collect_keeps_the_given_list(self):
        into = []
        assert collect(Author, into).value is into


class TestResolveOutputs:
    def test_binds_models(self):
        bindings = resolve_outputs([one(Author), many(Textbook)])
        assert [b.model for b in bindings] == [Author, Textbook]

    def test_accepts_model_instances(self):
        (binding,) = resolve_outputs([one(Author(author_id=1))])
        assert binding.model is Author

    @pytest.mark.parametrize("value", [[], Author, None, "textbooks"])
    def test_rejects_non_outputs(self, value):
        with pytest.raises(BindingError, match="output 0"):
            resolve_outputs([value])

    def test_rejects_non_models(self):
        with pytest.raises(BindingError, match="not a hydrakit model"):
            resolve_outputs([many(Author), many(dict)])

    def test_rejects_immutable_collect_target(self):
        with pytest.raises(BindingError, match="tuple can not be appended to"):
            resolve_outputs([collect(Author, ())])


class TestBindOutputs:
    def test_fills_outputs(self):
        a1, a2 = Author(author_id=1), Author(author_id=2)
        first, every = one(Author), many(Author)
        existing = [Author(author_id=9)]
        collected = collect(Author, existing)

        bind_outputs(resolve_outputs([first, every, collected]), {Author: [a1, a2]})

        assert first.value is a1
        assert every.value == [a1, a2]
        assert existing[1:] == [a1, a2]

    def test_unloaded_model_left_untouched(self):
        existing = [Textbook(textbook_id=1)]
        collected = collect(Textbook, existing)
        first = one(Textbook)

        bind_outputs(resolve_outputs([collected, first]), {Author: []})

        assert len(existing) == 1
        assert first.value is None

    def test_one_with_no_entities_stays_none(self):
        first = one(Author)
        bind_outputs(resolve_outputs([first]), {Author: []})
        assert first.value is None
