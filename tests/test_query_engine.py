"""
Unit tests for the graph query engine.

Tests the fast path, per-filter expansion, parent subsumption, sibling
fallback, hierarchy queries, depth limitation and exclusions, on the sample
graph and on small hand-built trees.
"""

import unittest

from askgraph.cancellation import CancelToken
from askgraph.errors import CancellationError, QueryExecutionError
from askgraph.models import Filter, RoamBlock, RoamPage
from askgraph.query import GraphQueryEngine, compile_search_list, parse_search_list

from tests.fakes import make_store


def filters_for(text):
    return compile_search_list(parse_search_list(text))


def uids(matches):
    return {match.uid for match in matches}


TOPICS = RoamPage(uid="topics01", title="Topics", children=[
    RoamBlock(uid="t-parent", content="topic alpha overview", edit_time=1, children=[
        RoamBlock(uid="t-child", content="topic alpha details", edit_time=2)
    ]),
    RoamBlock(uid="d-1", content="project omega", edit_time=3, children=[
        RoamBlock(uid="d-2", content="notes", edit_time=4, children=[
            RoamBlock(uid="d-3", content="risk register", edit_time=5)
        ])
    ]),
    RoamBlock(uid="e-1", content="project beta", edit_time=6, children=[
        RoamBlock(uid="e-2", content="risk accepted", edit_time=7)
    ])
])


class TestEngineOnSample(unittest.TestCase):
    """Test the engine on the sample graph."""

    def setUp(self):
        self.store = make_store()
        self.engine = GraphQueryEngine(self.store)

    def tearDown(self):
        self.store.disconnect()

    def test_single_filter(self):
        """Test a single filter returns the blocks matching it."""
        results = self.engine.run(filters_for("budget"))
        self.assertEqual(uids(results), {"mtg-phx-03", "idea-0002", "phx-goal-3"})

    def test_fast_path_same_block(self):
        """Test two filters at depth 0 return exactly the blocks matching both."""
        results = self.engine.run(filters_for("sugar vanilla"), depth_limitation=0)
        self.assertEqual(uids(results), {"cake-0001"})

    def test_sibling_fallback(self):
        """Test a parent whose distinct children match each filter is returned, not the children."""
        results = self.engine.run(filters_for("urgent budget"), depth_limitation=1)

        self.assertEqual(uids(results), {"mtg-phx-01"})
        samples = {child.uid for child in results[0].child_matching_content}
        self.assertEqual(samples, {"mtg-phx-02", "mtg-phx-03"})

    def test_sibling_fallback_is_configurable(self):
        """Test the sibling search only runs below the configured number of filters."""
        engine = GraphQueryEngine(self.store, sibling_max_filters=2)
        self.assertEqual(engine.run(filters_for("urgent budget"), depth_limitation=1), [])

    def test_descendant_match_with_samples(self):
        """Test a block matched through a descendant carries that descendant as a sample."""
        results = self.engine.run(filters_for("custard sugar"))

        self.assertEqual(uids(results), {"recipe-001"})
        self.assertEqual([c.uid for c in results[0].child_matching_content], ["recipe-002"])

    def test_no_duplicates(self):
        """Test blocks found by several branches appear once."""
        results = self.engine.run(filters_for("sugar vanilla"))
        found = [match.uid for match in results]

        self.assertEqual(len(found), len(set(found)))
        self.assertEqual(set(found), {"cake-0001", "recipe-001"})

    def test_idempotence(self):
        """Test two runs over an unchanged store give the same blocks."""
        for text in ("sugar vanilla", "urgent budget", "[[Project Phoenix]] > budget"):
            first = self.engine.run(filters_for(text))
            second = self.engine.run(filters_for(text))
            self.assertEqual(uids(first), uids(second))

    def test_parent_to_child(self):
        """Test 'A > B' returns the parent side blocks having a matching descendant."""
        results = self.engine.run(filters_for("[[Project Phoenix]] > budget"))
        self.assertEqual(uids(results), {"mtg-phx-01", "idea-0001"})

    def test_directed_query_at_depth_zero(self):
        """Test a hierarchy query still looks at direct children at depth 0."""
        results = self.engine.run(filters_for("[[Project Phoenix]] > budget"), depth_limitation=0)
        self.assertEqual(uids(results), {"mtg-phx-01", "idea-0001"})

    def test_child_to_parent(self):
        """Test 'A < B' returns the child side blocks."""
        results = self.engine.run(filters_for("budget < [[Project Phoenix]]"), children_only=True)
        self.assertEqual(uids(results), {"mtg-phx-03", "idea-0002"})

    def test_negation(self):
        """Test no returned block or sample matches the excluded pattern."""
        results = self.engine.run(filters_for("phoenix budget -april"))

        self.assertEqual(uids(results), {"idea-0001"})
        for match in results:
            self.assertNotIn("april", match.content.lower())
            for child in match.child_matching_content:
                self.assertNotIn("april", child.content.lower())

    def test_root_and_ancestors_excluded(self):
        """Test the excluded block and its ancestor path never appear."""
        excluded = {"mtg-phx-03", "mtg-phx-01", "03-14-2024"}
        for text in ("budget", "phoenix", "phoenix budget", "urgent budget"):
            for depth in (0, 1, 2, None):
                results = self.engine.run(filters_for(text), depth_limitation=depth,
                                          exclude_uid="mtg-phx-03")
                self.assertFalse(uids(results) & excluded, f"{text} at depth {depth}")

    def test_pages_limitation(self):
        """Test results can be limited to daily notes or to matching page titles."""
        self.assertEqual(uids(self.engine.run(filters_for("budget"), pages_limitation="dnp")),
                         {"mtg-phx-03", "idea-0002"})
        self.assertEqual(uids(self.engine.run(filters_for("sugar"), pages_limitation="Recipes")),
                         {"recipe-002", "recipe-011"})

    def test_no_executable_filter(self):
        """Test an empty or exclusion-only filter array returns nothing without error."""
        self.assertEqual(self.engine.run([]), [])
        self.assertEqual(self.engine.run(filters_for("the and of")), [])
        self.assertEqual(self.engine.run(filters_for("-budget")), [])

    def test_invalid_regex(self):
        """Test a failing storage query surfaces as QueryExecutionError."""
        with self.assertRaises(QueryExecutionError):
            self.engine.run([Filter(regex_string="(unclosed")])

    def test_cancellation(self):
        """Test a cancelled request stops before querying."""
        token = CancelToken()
        token.cancel()
        with self.assertRaises(CancellationError):
            self.engine.run(filters_for("budget"), cancel_token=token)


class TestEngineHierarchy(unittest.TestCase):
    """Test subsumption and depth limitation on a hand-built tree."""

    def setUp(self):
        self.store = make_store([TOPICS])
        self.engine = GraphQueryEngine(self.store)

    def tearDown(self):
        self.store.disconnect()

    def test_parent_subsumption(self):
        """Test a parent whose direct child matches the same filter is dropped."""
        self.assertEqual(uids(self.engine.run(filters_for("alpha"))), {"t-child"})

    def test_directed_query_is_strict(self):
        """Test a parent side block must have a matching descendant, its own content is not enough."""
        self.assertEqual(self.engine.run(filters_for("alpha > overview")), [])

    def test_depth_monotonicity(self):
        """Test results grow with the depth limitation."""
        filters = filters_for("project risk")
        by_depth = {depth: uids(self.engine.run(filters, depth_limitation=depth))
                    for depth in (0, 1, 2, None)}

        self.assertEqual(by_depth[0], set())
        self.assertEqual(by_depth[1], {"e-1"})
        self.assertEqual(by_depth[2], {"e-1", "d-1"})
        self.assertTrue(by_depth[0] <= by_depth[1] <= by_depth[2] <= by_depth[None])


if __name__ == '__main__':
    unittest.main(verbosity=2)
