"""Tests for the expansion pipeline."""

import asyncio

import pytest

from linkrelay.expanders.base import Expander, host_in
from linkrelay.expanders.chain import ExpanderChain
from linkrelay.relay.pipeline import ExpansionPipeline
from linkrelay.stream.schemas import Activity


class TableExpander(Expander):
    """Bitly-like expander backed by a dict; tracks lookup concurrency."""

    name = "bitly"

    def __init__(self, table: dict[str, str], delay: float = 0.0):
        super().__init__()
        self._table = table
        self._delay = delay
        self.active = 0
        self.peak = 0

    def claims(self, url: str) -> bool:
        return host_in(url, frozenset({"bit.ly"}))

    async def _lookup(self, url: str) -> str:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self._delay)
            if url not in self._table:
                raise LookupError(url)
            return self._table[url]
        finally:
            self.active -= 1


@pytest.fixture
def chain() -> ExpanderChain:
    return ExpanderChain([TableExpander({"http://bit.ly/abc": "http://example.com/page"})])


class TestExpansionPipeline:
    """Tests for ExpansionPipeline."""

    def test_rejects_zero_concurrency(self, chain):
        with pytest.raises(ValueError):
            ExpansionPipeline(chain, concurrency=0)

    def test_select_keeps_linked_activities(self, sample_activity, plain_activity):
        """Only activities with an http(s) link are selected."""
        selected = ExpansionPipeline.select([sample_activity, plain_activity])

        assert selected == [sample_activity]

    @pytest.mark.asyncio
    async def test_rewrites_body_and_tags(self, chain, sample_activity):
        """Links are replaced by their long form and the provenance tag is appended."""
        pipeline = ExpansionPipeline(chain, provenance_tag="link-relay")

        [result] = await pipeline.run([sample_activity])

        assert result.body == "see http://example.com/page and more"
        assert result.sources == ["origin", "link-relay"]

    @pytest.mark.asyncio
    async def test_unresolvable_link_kept(self, chain):
        """A failed expansion keeps the short link but still tags the activity."""
        activity = Activity(body="broken http://bit.ly/nope here")
        pipeline = ExpansionPipeline(chain, provenance_tag="link-relay")

        [result] = await pipeline.run([activity])

        assert result.body == "broken http://bit.ly/nope here"
        assert result.sources == ["link-relay"]

    @pytest.mark.asyncio
    async def test_repeated_and_trailing_punctuation(self, chain):
        """Every occurrence is replaced; trailing punctuation stays outside the link."""
        activity = Activity(body="http://bit.ly/abc, again: http://bit.ly/abc.")
        pipeline = ExpansionPipeline(chain)

        [result] = await pipeline.run([activity])

        assert result.body == "http://example.com/page, again: http://example.com/page."
        assert pipeline.last_stats.urls == 1
        assert pipeline.last_stats.rewritten_urls == 1

    @pytest.mark.asyncio
    async def test_no_links_returns_empty(self, chain, plain_activity):
        """A batch without links produces nothing to publish."""
        pipeline = ExpansionPipeline(chain)

        assert await pipeline.run([plain_activity]) == []
        assert pipeline.last_stats.activities == 1
        assert pipeline.last_stats.linked == 0

    @pytest.mark.asyncio
    async def test_every_linked_activity_returned(self):
        """All linked activities come back, in any order."""
        table = {f"http://bit.ly/{i}": f"http://example.com/{i}" for i in range(20)}
        pipeline = ExpansionPipeline(ExpanderChain([TableExpander(table)]), concurrency=4)
        activities = [Activity(id=str(i), body=f"link http://bit.ly/{i}") for i in range(20)]
        activities.append(Activity(id="plain", body="no link"))

        results = await pipeline.run(activities)

        assert sorted(a.id for a in results) == sorted(str(i) for i in range(20))
        for activity in results:
            assert activity.body == f"link http://example.com/{activity.id}"

    @pytest.mark.asyncio
    async def test_worker_pool_bounds_concurrency(self):
        """No more lookups run at once than there are workers."""
        table = {f"http://bit.ly/{i}": f"http://example.com/{i}" for i in range(12)}
        expander = TableExpander(table, delay=0.01)
        pipeline = ExpansionPipeline(ExpanderChain([expander]), concurrency=3)
        activities = [Activity(body=f"http://bit.ly/{i}") for i in range(12)]

        await pipeline.run(activities)

        assert expander.peak == 3

    @pytest.mark.asyncio
    async def test_error_cancels_workers(self):
        """An unexpected error propagates out of run()."""

        class BrokenChain(ExpanderChain):
            async def resolve(self, url: str) -> str:
                raise RuntimeError("boom")

        pipeline = ExpansionPipeline(BrokenChain([]), concurrency=2)

        with pytest.raises(RuntimeError):
            await pipeline.run([Activity(body="http://bit.ly/a"), Activity(body="http://bit.ly/b")])
