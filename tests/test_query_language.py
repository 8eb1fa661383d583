"""
Unit tests for the symbolic query language.

Tests tokenization, item parsing, hierarchy operators and the validation
rules of search lists.
"""

import unittest

from askgraph.errors import FilterCompilationError, InterpretationError
from askgraph.models import ConditionGroup, SearchCondition
from askgraph.query import parse_search_list, to_condition_group, tokenize


class TestTokenize(unittest.TestCase):
    """Test splitting a search list side into items."""

    def test_and_separators(self):
        """Test '+', '&' and plain whitespace all separate items."""
        self.assertEqual(tokenize("recipes + sugar & vanilla pastries"),
                         ["recipes", "sugar", "vanilla", "pastries"])

    def test_disjunction_with_spaces(self):
        """Test 'a | b' and 'a |b' are glued into one item."""
        self.assertEqual(tokenize("sugar | vanilla"), ["sugar|vanilla"])
        self.assertEqual(tokenize("sugar |vanilla honey"), ["sugar|vanilla", "honey"])

    def test_brackets_and_quotes_are_kept(self):
        """Test page references and quoted text are not split on spaces."""
        self.assertEqual(tokenize('[[Jane Doe]] "fix the login"'),
                         ["[[Jane Doe]]", '"fix the login"'])


class TestParseSearchList(unittest.TestCase):
    """Test parsing complete search lists."""

    def test_items_alternatives_and_negation(self):
        """Test a conjunction with an OR item and an excluded item."""
        search_list = parse_search_list("recipes + sugar|vanilla -pastries")

        self.assertEqual(len(search_list.items), 3)
        self.assertEqual([t.text for t in search_list.items[1].terms], ["sugar", "vanilla"])
        self.assertTrue(search_list.items[2].negate)
        self.assertFalse(search_list.is_directed)
        self.assertIsNone(search_list.hierarchy)

    def test_parent_to_child_hierarchy(self):
        """Test 'A > B' marks the left side as the top block."""
        search_list = parse_search_list("books > [[to read]]")

        self.assertEqual(search_list.hierarchy, ">")
        self.assertTrue(search_list.items[0].is_top_block)
        self.assertFalse(search_list.items[1].is_top_block)
        self.assertFalse(search_list.children_only)

    def test_child_to_parent_hierarchy(self):
        """Test 'A < B' marks the right side as the top block and returns children."""
        search_list = parse_search_list("#important|#urgent < budget")

        self.assertEqual(search_list.hierarchy, "<")
        self.assertEqual([t.text for t in search_list.items[0].terms], ["#important", "#urgent"])
        self.assertFalse(search_list.items[0].is_top_block)
        self.assertEqual(search_list.items[1].terms[0].text, "budget")
        self.assertTrue(search_list.items[1].is_top_block)
        self.assertTrue(search_list.children_only)

    def test_depth_hint(self):
        """Test a depth written after the hierarchy operator."""
        self.assertEqual(parse_search_list("project >(1) budget").depth_hint, 1)
        self.assertEqual(parse_search_list("project > (2) budget").depth_hint, 2)
        self.assertIsNone(parse_search_list("project > budget").depth_hint)

    def test_term_markers(self):
        """Test semantic, quoted and wildcard terms."""
        search_list = parse_search_list('car~ "Jane" practi*')
        car, jane, practice = [item.terms[0] for item in search_list.items]

        self.assertTrue(car.semantic)
        self.assertEqual(car.text, "car")
        self.assertTrue(jane.quoted)
        self.assertEqual(jane.text, "Jane")
        self.assertTrue(practice.wildcard)

    def test_ignored_terms_and_stopwords(self):
        """Test '\\term' and stopword-only items are dropped."""
        search_list = parse_search_list("\\beautiful the day")
        self.assertEqual([item.terms[0].text for item in search_list.items], ["day"])

        self.assertEqual(parse_search_list("the and of").items, [])

    def test_two_hierarchy_operators(self):
        """Test only one hierarchy operator is allowed."""
        with self.assertRaises(FilterCompilationError):
            parse_search_list("a > b > c")

    def test_two_negations(self):
        """Test only one excluded item is allowed."""
        with self.assertRaises(FilterCompilationError):
            parse_search_list("budget -april -may")

    def test_match_all_rules(self):
        """Test '.*' is rejected on the parent side and next to another condition."""
        self.assertEqual(len(parse_search_list("budget > .*").items), 2)
        with self.assertRaises(FilterCompilationError):
            parse_search_list(".* > budget")
        with self.assertRaises(FilterCompilationError):
            parse_search_list(".* budget")

    def test_too_many_items(self):
        """Test the maximum number of conjunctive items."""
        with self.assertRaises(FilterCompilationError):
            parse_search_list("alpha beta gamma delta epsilon")
        self.assertEqual(len(parse_search_list("alpha beta gamma delta").items), 4)
        self.assertEqual(len(parse_search_list("alpha beta gamma delta epsilon", max_items=5).items), 5)

    def test_compilation_errors_are_interpretation_errors(self):
        """Test the checker can treat parse failures like interpreter failures."""
        with self.assertRaises(InterpretationError):
            parse_search_list("a < b < c")


class TestConditionGroup(unittest.TestCase):
    """Test the structured view of a search list."""

    def test_condition_group(self):
        """Test items become an AND group of conditions or OR groups."""
        group = to_condition_group(parse_search_list("sugar|vanilla -[[Jane Doe]] colou?r"))

        self.assertEqual(group.combination, "AND")
        self.assertEqual(len(group.conditions), 3)

        alternatives = group.conditions[0]
        self.assertIsInstance(alternatives, ConditionGroup)
        self.assertEqual(alternatives.combination, "OR")
        self.assertEqual(len(alternatives.conditions), 2)

        page = group.conditions[1]
        self.assertIsInstance(page, SearchCondition)
        self.assertEqual(page.type, "page_ref")
        self.assertTrue(page.negate)

        regex = group.conditions[2]
        self.assertEqual(regex.type, "regex")
        self.assertEqual(regex.match_type, "regex")


if __name__ == '__main__':
    unittest.main(verbosity=2)
