"""Tests for cumulative-token LTM paging."""

from __future__ import annotations

from tests.conftest import seed


async def _walk(store, budget: int, query: str | None = None) -> list[list[int]]:
    """Page through the whole LTM view and return the ids of each page."""
    pages: list[list[int]] = []
    offset = 0
    while True:
        if query is None:
            page = await store.get_lt_messages_by_tokens(budget, offset)
        else:
            page = await store.search_lt_messages_by_tokens(query, budget, offset)
        assert page.success, page.error
        if not page.messages:
            break
        pages.append([m.id for m in page.messages])
        offset = page.total_tokens
        if not page.has_more:
            break
    return pages


class TestTokenPaging:
    async def test_empty_store(self, store):
        page = await store.get_lt_messages_by_tokens(100, 0)
        assert page.success
        assert page.messages == []
        assert page.total_tokens == 0
        assert page.has_more is False

    async def test_boundaries(self, store):
        """Counts [10, 20, 30] give cumulative [10, 30, 60]."""
        ids = await seed(store, ("user", "a", 10), ("assistant", "b", 20), ("user", "c", 30))

        first = await store.get_lt_messages_by_tokens(30, 0)
        assert [m.id for m in first.messages] == ids[:2]
        assert [m.cumulative_tokens for m in first.messages] == [10, 30]
        assert first.total_tokens == 30
        assert first.has_more is True

        second = await store.get_lt_messages_by_tokens(30, 30)
        assert [m.id for m in second.messages] == [ids[2]]
        assert second.total_tokens == 60
        assert second.has_more is False

        past_end = await store.get_lt_messages_by_tokens(30, 60)
        assert past_end.messages == []
        assert past_end.total_tokens == 60
        assert past_end.has_more is False

    async def test_row_exactly_on_upper_bound_is_included(self, store):
        ids = await seed(store, ("user", "a", 5), ("user", "b", 5))
        page = await store.get_lt_messages_by_tokens(10, 0)
        assert [m.id for m in page.messages] == ids

    async def test_oversized_message_gives_empty_page_with_more(self, store):
        await seed(store, ("user", "huge", 500))
        page = await store.get_lt_messages_by_tokens(100, 0)
        assert page.messages == []
        assert page.total_tokens == 0
        assert page.has_more is True

    async def test_pages_partition_history(self, store):
        """Walking from offset 0 yields every LTM row exactly once, in order."""
        counts = [7, 3, 12, 1, 9, 4, 4, 15, 2, 8]
        ids = await seed(store, *[("user", f"m{i}", c) for i, c in enumerate(counts)])
        pages = await _walk(store, budget=16)
        flattened = [i for page in pages for i in page]
        assert flattened == ids
        assert len(pages) > 1

    async def test_excludes_summaries_and_untracked(self, store):
        kept = await seed(store, ("user", "a", 5))
        await store.save_message("assistant", "summary", is_summarization=True, token_count=5)
        await seed(store, ("user", "no count", None))
        kept += await seed(store, ("assistant", "b", 5))

        page = await store.get_lt_messages_by_tokens(100, 0)
        assert [m.id for m in page.messages] == kept
        assert page.total_tokens == 10

    async def test_summary_rows_never_paged(self, store):
        """Summary rows written directly to the table stay out of LTM pages and search."""
        conn = await store.ensure_ready()
        await conn.execute(
            "INSERT INTO messages (role, content, is_summarization, token_count)"
            " VALUES ('assistant', 'summary of foo bar', 1, 5)"
        )
        await conn.commit()
        kept = await seed(store, ("user", "foo bar here", 4), ("assistant", "more foo bar", 3))

        page = await store.get_lt_messages_by_tokens(100, 0)
        assert [m.id for m in page.messages] == kept
        assert page.total_tokens == 7

        found = await store.search_lt_messages_by_tokens("foo bar", 100, 0)
        assert found.success
        assert [m.id for m in found.messages] == kept
        assert found.total_tokens == 7

    async def test_timestamp_then_id_order(self, store):
        late = await seed(store, ("user", "late", 5), timestamp="2024-06-01 00:00:00")
        early = await seed(store, ("user", "early", 5), timestamp="2024-01-01 00:00:00")
        page = await store.get_lt_messages_by_tokens(100, 0)
        assert [m.id for m in page.messages] == early + late

    async def test_page_tokens_within_budget(self, store):
        await seed(store, *[("user", f"m{i}", 6) for i in range(10)])
        offset = 0
        while True:
            page = await store.get_lt_messages_by_tokens(20, offset)
            if not page.messages:
                break
            assert sum(m.token_count for m in page.messages) <= 20
            assert page.total_tokens == page.messages[-1].cumulative_tokens
            offset = page.total_tokens
            if not page.has_more:
                break
        assert offset == 60


class TestFilteredPaging:
    async def test_all_words_required(self, store):
        ids = await seed(
            store,
            ("user", "foo and bar", 10),
            ("user", "only foo", 10),
            ("assistant", "bar then foo", 10),
        )
        page = await store.search_lt_messages_by_tokens("foo bar", 100, 0)
        assert [m.id for m in page.messages] == [ids[0], ids[2]]
        # cumulative positions are over the filtered rows
        assert [m.cumulative_tokens for m in page.messages] == [10, 20]

    async def test_case_sensitive(self, store):
        await seed(store, ("user", "Lisbon", 3))
        page = await store.search_lt_messages_by_tokens("lisbon", 100, 0)
        assert page.messages == []

    async def test_whitespace_query_is_empty(self, store):
        await seed(store, ("user", "anything", 3))
        page = await store.search_lt_messages_by_tokens("   ", 100, 7)
        assert page.success
        assert page.messages == []
        assert page.total_tokens == 7
        assert page.has_more is False

    async def test_filtered_walk_partitions_matches(self, store):
        entries = [("user", f"topic {'x' if i % 2 else 'y'} {i}", 5) for i in range(12)]
        ids = await seed(store, *entries)
        pages = await _walk(store, budget=10, query="x")
        assert [i for page in pages for i in page] == ids[1::2]

    async def test_like_wildcards_are_literal(self, store):
        await seed(store, ("user", "50% off", 3), ("user", "50 off", 3))
        page = await store.search_lt_messages_by_tokens("%", 100, 0)
        assert [m.content for m in page.messages] == ["50% off"]
