import sys
import os
from unittest.mock import AsyncMock, Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.search import FanOutConfig
from indexer.docset_adapter import DocsetAdapter, EntityMatches
from indexer.models import SearchOptions
from server.exploration import EntityExplorer, bucket_for
from server.parallel_search import ParallelSearchManager

from conftest import external


@pytest.fixture
def manager():
    manager = ParallelSearchManager(FanOutConfig(adapter_timeout=2.0))
    yield manager
    manager.close()


class TestEntityExploration:
    """Test exploration across docsets."""

    @pytest.mark.asyncio
    async def test_platform_variants_reported_once_as_canonical(self, manager, make_docset):
        objc = DocsetAdapter(make_docset("objc", [
            ("UIView", "Class", "documentation/uikit/uiview?language=objc"),
            ("UIView.layoutSubviews", "Method", "documentation/uikit/uiview/layoutsubviews?language=objc"),
        ]))
        swift = DocsetAdapter(make_docset("swift", [
            ("UIView", "Class", "documentation/uikit/uiview?language=swift"),
            ("UIView.frame", "Property", "documentation/uikit/uiview/frame?language=swift"),
        ]))
        manager.register(objc)
        manager.register(swift)

        result = await EntityExplorer(manager).explore("UIView")

        assert [(e.name, e.source_id, e.canonical) for e in result.classes] == [("UIView", "swift", True)]
        assert [e.name for e in result.methods] == ["UIView.layoutSubviews"]
        assert [e.name for e in result.properties] == ["UIView.frame"]
        assert result.counts["classes"] == 1
        objc.close()
        swift.close()

    @pytest.mark.asyncio
    async def test_buckets_truncated_but_counts_complete(self, manager, make_docset):
        rows = [("UIView", "Class", "uiview")]
        rows += [(f"UIView.method{i:02d}", "Method", f"uiview/m{i}") for i in range(30)]
        adapter = DocsetAdapter(make_docset("uikit", rows))
        manager.register(adapter)

        result = await EntityExplorer(manager).explore("UIView", SearchOptions(limit=5))

        assert len(result.methods) == 5
        assert result.counts["methods"] == 30
        assert result.methods[0].name == "UIView.method00"
        adapter.close()

    @pytest.mark.asyncio
    async def test_framework_entry(self, manager, make_docset, swift_rows):
        adapter = DocsetAdapter(make_docset("apple", swift_rows))
        manager.register(adapter)

        result = await EntityExplorer(manager).explore("WidgetKit")

        assert result.framework.name == "WidgetKit"
        assert result.counts["framework"] == 1
        assert all(e.name != "WidgetKit" for e in result.other)
        adapter.close()

    @pytest.mark.asyncio
    async def test_no_matches_is_not_an_error(self, manager, make_docset, swift_rows):
        adapter = DocsetAdapter(make_docset("apple", swift_rows))
        manager.register(adapter)

        result = await EntityExplorer(manager).explore("Nonexistent")

        assert result.is_empty
        assert result.framework is None
        assert result.classes == []
        adapter.close()

    @pytest.mark.asyncio
    async def test_blank_name_makes_no_calls(self):
        manager = Mock()
        manager.explore_across_sources = AsyncMock()

        result = await EntityExplorer(manager).explore("  ")

        assert result.is_empty
        manager.explore_across_sources.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_contract_violations(self):
        explorer = EntityExplorer(Mock())
        with pytest.raises(TypeError):
            await explorer.explore(None)
        with pytest.raises(TypeError):
            await explorer.explore("UIView", {"limit": 3})

    @pytest.mark.asyncio
    async def test_type_filter_and_docset_alias(self):
        manager = Mock()
        manager.explore_across_sources = AsyncMock(return_value=[])

        await EntityExplorer(manager).explore("UIView", SearchOptions(type_filter="Method", docset_id="uikit"))

        manager.explore_across_sources.assert_awaited_once_with(
            "UIView", ("Method",), "uikit", timeout=None)


class TestAggregation:

    def test_truncated_source_counts_unreturned_rows(self):
        entries = [external("a", f"UIView.m{i}", entry_type="Method") for i in range(10)]
        matches = EntityMatches(entries=entries, type_totals={"Method": 50}, truncated=True)

        result = EntityExplorer(Mock()).aggregate("UIView", [matches], limit=3)

        assert len(result.methods) == 3
        assert result.counts["methods"] == 50

    def test_same_members_in_two_truncated_variants_counted_once(self):
        def variant(source_id):
            entries = [external(source_id, f"UIView.m{i}", entry_type="Method") for i in range(5)]
            return EntityMatches(entries=entries, type_totals={"Method": 10}, truncated=True)

        result = EntityExplorer(Mock()).aggregate("UIView", [variant("swift"), variant("objc")], limit=20)

        assert len(result.methods) == 5
        assert result.counts["methods"] == 10

    def test_members_rank_before_prefixed_types(self):
        matches = EntityMatches(entries=[
            external("a", "UIViewController"),
            external("a", "UIView.Subview"),
            external("a", "UIView"),
        ])
        result = EntityExplorer(Mock()).aggregate("UIView", [matches])
        assert [e.name for e in result.classes] == ["UIView", "UIView.Subview", "UIViewController"]

    def test_bucket_mapping(self):
        assert bucket_for("Instance Method") == "methods"
        assert bucket_for("Enumeration") == "enums"
        assert bucket_for("Macro") == "other"

    def test_to_dict(self):
        matches = EntityMatches(entries=[external("a", "UIView")])
        data = EntityExplorer(Mock()).aggregate("UIView", [matches]).to_dict()
        assert data["classes"][0]["title"] == "UIView"
        assert data["counts"]["classes"] == 1
        assert data["framework"] is None
