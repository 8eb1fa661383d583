"""
Unit tests for the DuckDB graph store.

Tests page tree import, read helpers used for rendering, the storage query
primitive and the LLM call log.
"""

import unittest

from askgraph.database import TraversalRule, rule_for_depth
from askgraph.models import RoamBlock, RoamPage

from tests.fakes import make_store


class TestGraphStoreImport(unittest.TestCase):
    """Test importing page trees."""

    def setUp(self):
        self.store = make_store()

    def tearDown(self):
        self.store.disconnect()

    def test_counts(self):
        """Test every block of the sample graph is stored."""
        self.assertEqual(self.store.count_blocks(), 17)

    def test_block_and_page(self):
        """Test a stored block keeps its page, parent and ordered children."""
        block = self.store.get_block("mtg-phx-01")

        self.assertEqual(block.page_uid, "03-14-2024")
        self.assertEqual(block.page_title, "March 14th, 2024")
        self.assertIsNone(block.parent_uid)
        self.assertEqual(block.children_uids, ["mtg-phx-02", "mtg-phx-03"])
        self.assertTrue(self.store.get_page("03-14-2024").is_daily)
        self.assertFalse(self.store.get_page("recipes01").is_daily)

    def test_reimport_refreshes_blocks(self):
        """Test importing a page again replaces its blocks instead of duplicating them."""
        page = RoamPage(uid="recipes01", title="Recipes", children=[
            RoamBlock(uid="recipe-100", content="Apple pie")
        ])
        pages, blocks = self.store.import_pages([page])

        self.assertEqual((pages, blocks), (0, 1))
        self.assertIsNone(self.store.get_block("recipe-001"))
        self.assertEqual(self.store.get_children("recipes01"), [("recipe-100", "Apple pie")])


class TestGraphStoreReads(unittest.TestCase):
    """Test hierarchy helpers."""

    def setUp(self):
        self.store = make_store([
            RoamPage(uid="deep01", title="Deep", children=[
                RoamBlock(uid="lvl-1", content="level one", children=[
                    RoamBlock(uid="lvl-2", content="level two", children=[
                        RoamBlock(uid="lvl-3", content="level three", children=[
                            RoamBlock(uid="lvl-4", content="level four")
                        ])
                    ])
                ])
            ])
        ])

    def tearDown(self):
        self.store.disconnect()

    def test_path_and_ancestors(self):
        """Test ancestors are listed from the top level block down."""
        self.assertEqual(self.store.get_path("lvl-3"), [("lvl-1", "level one"), ("lvl-2", "level two")])
        self.assertEqual(self.store.get_ancestor_uids("lvl-3"), ["deep01", "lvl-1", "lvl-2"])
        self.assertEqual(self.store.get_path("lvl-1"), [])
        self.assertEqual(self.store.get_page_uid_of_block("lvl-4"), "deep01")

    def test_formatted_path(self):
        """Test the breadcrumb is limited in depth and words."""
        self.assertEqual(self.store.get_formatted_path("lvl-4"), "level one > level two > level three")
        self.assertEqual(self.store.get_formatted_path("lvl-4", max_depth=1, word_limit=1), "level...")

    def test_flattened_content(self):
        """Test children are rendered indented up to a number of levels."""
        self.assertEqual(
            self.store.get_flattened_content("lvl-1", max_levels=2),
            "\n  - level two\n    - level three"
        )
        self.assertEqual(self.store.get_flattened_content("lvl-4"), "")
        self.assertEqual(self.store.get_first_child_content("lvl-2"), "level three")

    def test_traversal_rules(self):
        """Test each depth limitation selects its own traversal rule."""
        self.assertIsNone(rule_for_depth(0))
        self.assertEqual(rule_for_depth(1), TraversalRule.DIRECT_CHILDREN)
        self.assertEqual(rule_for_depth(2), TraversalRule.TWO_LEVELS)
        self.assertEqual(rule_for_depth(None), TraversalRule.DESCENDANTS)

    def test_descendants_matching(self):
        """Test descendant search is bounded by the traversal rule."""
        regex = "(?i)level (two|three)"
        direct = self.store.descendants_matching(["lvl-1"], regex, TraversalRule.DIRECT_CHILDREN)
        two = self.store.descendants_matching(["lvl-1"], regex, TraversalRule.TWO_LEVELS)
        limited = self.store.descendants_matching(["lvl-1"], "(?i)level", TraversalRule.DESCENDANTS,
                                                  limit_per_root=2)

        self.assertEqual(direct, {"lvl-1": [("lvl-2", "level two")]})
        self.assertEqual(two, {"lvl-1": [("lvl-2", "level two"), ("lvl-3", "level three")]})
        self.assertEqual([uid for uid, _ in limited["lvl-1"]], ["lvl-2", "lvl-3"])


class TestStorageQuery(unittest.TestCase):
    """Test the regex query primitive on the sample graph."""

    def setUp(self):
        self.store = make_store()

    def tearDown(self):
        self.store.disconnect()

    def test_conjunction_and_exclusion(self):
        """Test every regex must match and the exclusion must not."""
        rows = self.store.blocks_matching(["(?i)budget"], exclude_regex="(?i)april")
        self.assertEqual({row[0] for row in rows}, {"idea-0002", "phx-goal-3"})

        rows = self.store.blocks_matching(["(?i)sugar", "(?i)vanilla"])
        self.assertEqual([row[0] for row in rows], ["cake-0001"])

    def test_page_limitation(self):
        """Test daily notes and page title limitations."""
        dnp = self.store.blocks_matching(["(?i)budget"], pages_limitation="dnp")
        self.assertEqual({row[0] for row in dnp}, {"mtg-phx-03", "idea-0002"})

        recipes = self.store.blocks_matching(["(?i)sugar"], pages_limitation="^Recipes$")
        self.assertEqual({row[0] for row in recipes}, {"recipe-002", "recipe-011"})

    def test_parents_with_matching_siblings(self):
        """Test a parent is found when distinct children match each regex."""
        rows = self.store.parents_with_matching_siblings(
            ["mtg-phx-02"], ["(?i)urgent", "(?i)budget"]
        )
        self.assertEqual([row[0] for row in rows], ["mtg-phx-01"])
        self.assertEqual(rows[0][4], "mtg-phx-02")
        self.assertEqual(rows[0][6], "mtg-phx-03")

        excluded = self.store.parents_with_matching_siblings(
            ["mtg-phx-02"], ["(?i)urgent", "(?i)budget"], exclude_regex="(?i)april"
        )
        self.assertEqual(excluded, [])


class TestAgentCallLog(unittest.TestCase):
    """Test the LLM call log."""

    def setUp(self):
        self.store = make_store([])

    def tearDown(self):
        self.store.disconnect()

    def test_log_and_filter_by_request(self):
        """Test calls are logged and filtered by request id."""
        call_id = self.store.log_ai_agent_call(
            agent_name="nl-query-interpreter",
            input_data="{}",
            system_prompt="system",
            user_prompt="user",
            model_name="gemma3",
            raw_response='{"searchList": "budget"}',
            request_id="req-1"
        )
        self.store.log_ai_agent_call(
            agent_name="post-processing",
            input_data="{}",
            system_prompt=None,
            user_prompt="user",
            model_name="gemma3",
            raw_response="",
            success=False,
            error_message="timeout",
            request_id="req-2"
        )

        self.assertIsNotNone(call_id)
        calls = self.store.get_ai_agent_calls(request_id="req-1")
        self.assertEqual(len(calls), 1)
        self.assertEqual(calls[0]["agent_name"], "nl-query-interpreter")
        self.assertEqual(len(self.store.get_ai_agent_calls(success_only=True)), 1)


if __name__ == '__main__':
    unittest.main(verbosity=2)
