"""
Unit tests for core askgraph components.

Tests non-AI components like configuration management, database setup, data
models, state serialization and the command line parser.
"""

import os
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from askgraph.config import ConfigManager
from askgraph.database import GraphStore
from askgraph.models import (
    Filter, MatchResult, Period, QueryInterpretation, RoamBlock, RoamPage
)
from askgraph.orchestration import restore_state, serialize_state
from askgraph.query import parse_search_list


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        # Should use default values
        self.assertEqual(config.ollama_host, "http://localhost:11434")
        self.assertEqual(config.model_name, "gemma3")
        self.assertEqual(config.database_filename, "askgraph.db")
        self.assertEqual(config.default_display_count, 10)
        self.assertEqual(config.sibling_max_filters, 3)
        self.assertEqual(config.user_choice_timeout, 300)
        self.assertEqual(config.agent_definitions, {})

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file, merged over the defaults."""
        test_config = """
ai:
  ollama_host: "http://test:11434"
  model: "test-model"

search:
  default_display_count: 5
  sibling_candidate_cap: 20

conversation:
  max_history: 4
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        # Should load values from file
        self.assertEqual(config.ollama_host, "http://test:11434")
        self.assertEqual(config.model_name, "test-model")
        self.assertEqual(config.default_display_count, 5)
        self.assertEqual(config.sibling_candidate_cap, 20)
        self.assertEqual(config.max_history, 4)

        # Keys missing from the file keep their defaults
        self.assertEqual(config.get("ai.timeout"), 60.0)
        self.assertEqual(config.get("search.preselection_cap"), 20)
        self.assertEqual(config.max_cached_results, 10)

    def test_invalid_yaml_falls_back_to_defaults(self):
        """Test an unreadable file gives the default configuration."""
        with open(self.config_path, 'w') as f:
            f.write("ai: [unclosed")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.model_name, "gemma3")

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))  # Uses defaults

        # Test nested access
        self.assertEqual(config.get("ai.model"), "gemma3")
        self.assertEqual(config.get("search.child_samples_per_filter"), 3)
        self.assertEqual(config.get("nonexistent.key", "default"), "default")
        self.assertEqual(config.get_section("database"), {"filename": "askgraph.db"})

    def test_config_reload(self):
        """Test configuration reloading."""
        # Create initial config
        with open(self.config_path, 'w') as f:
            f.write("ai:\n  model: 'model1'")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.model_name, "model1")

        # Update config file
        with open(self.config_path, 'w') as f:
            f.write("ai:\n  model: 'model2'")

        config.reload()
        self.assertEqual(config.model_name, "model2")


class TestDataModels(unittest.TestCase):
    """Test data model validation and functionality."""

    def test_page_tree(self):
        """Test page trees count their blocks and recognize daily notes."""
        page = RoamPage(uid="03-14-2024", title="March 14th, 2024", children=[
            RoamBlock(uid="parent-01", content="Parent", children=[
                RoamBlock(uid="child-001", content="Child")
            ]),
            RoamBlock(uid="other-001", content="Other")
        ])

        self.assertTrue(page.is_daily)
        self.assertEqual(page.block_count(), 3)
        self.assertEqual(page.children[0].children[0].uid, "child-001")
        self.assertFalse(RoamPage(uid="13-01-2024", title="Not a date").is_daily)

    def test_query_interpretation(self):
        """Test interpretations keep optional fields unset and bound the depth."""
        interpretation = QueryInterpretation(searchList="budget")

        self.assertIsNone(interpretation.nbOfResults)
        self.assertIsNone(interpretation.depthLimitation)

        with self.assertRaises(ValidationError):
            QueryInterpretation(searchList="budget", depthLimitation=3)
        with self.assertRaises(ValidationError):
            QueryInterpretation(nbOfResults=3)

    def test_search_list_direction(self):
        """Test the hierarchy direction of parsed search lists."""
        self.assertFalse(parse_search_list("budget").is_directed)
        self.assertTrue(parse_search_list("a > b").is_directed)
        self.assertFalse(parse_search_list("a > b").children_only)
        self.assertTrue(parse_search_list("a < b").children_only)


class TestStateSerialization(unittest.TestCase):
    """Test search states survive a continuation token."""

    def test_serialize_and_restore(self):
        """Test typed fields are restored and pending LLM output is dropped."""
        state = {
            "user_query": "budget",
            "llm_response": QueryInterpretation(searchList="budget"),
            "llm_response_node": "nl-query-interpreter",
            "filters": [[Filter(regex_string="(?i)budget")]],
            "remaining_query_filters": [],
            "matching_blocks": [MatchResult(uid="idea-0002", content="show weekly budget burn")],
            "filtered_blocks": None,
            "period": Period(begin="2024/03/01"),
            "shift_display": 10
        }
        data = serialize_state(state)

        self.assertNotIn("llm_response", data)
        self.assertEqual(data["filters"], [[{"regex_string": "(?i)budget", "is_to_exclude": False,
                                             "is_top_block_filter": False}]])

        restored = restore_state(data)
        self.assertEqual(restored["filters"][0][0].regex_string, "(?i)budget")
        self.assertEqual(restored["matching_blocks"][0].uid, "idea-0002")
        self.assertIsNone(restored["filtered_blocks"])
        self.assertEqual(restored["period"].begin, "2024/03/01")
        self.assertEqual(restored["shift_display"], 10)


class TestGraphStoreSetup(unittest.TestCase):
    """Test database management functionality."""

    def setUp(self):
        """Set up test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"

    def tearDown(self):
        """Clean up test database."""
        for path in Path(self.temp_dir).iterdir():
            path.unlink()
        os.rmdir(self.temp_dir)

    def test_database_initialization(self):
        """Test database creation and table initialization."""
        with GraphStore(str(self.db_path)) as db:
            db.initialize_database()

            # Check that database file was created
            self.assertTrue(self.db_path.exists())
            self.assertIsNotNone(db.connection)
            self.assertEqual(db.count_blocks(), 0)

    def test_data_persists(self):
        """Test imported pages are found again after reconnecting."""
        page = RoamPage(uid="notes0001", title="Notes", children=[
            RoamBlock(uid="note-0001", content="Persisted block")
        ])
        with GraphStore(str(self.db_path)) as db:
            db.initialize_database()
            db.import_pages([page])

        with GraphStore(str(self.db_path)) as db:
            db.initialize_database()
            self.assertEqual(db.get_block("note-0001").content, "Persisted block")

    def test_query_without_connection(self):
        """Test querying a closed store fails."""
        db = GraphStore(str(self.db_path))
        with self.assertRaises(RuntimeError):
            db.blocks_matching(["(?i)budget"])


class TestCommandLine(unittest.TestCase):
    """Test the command line parser."""

    def test_subcommands(self):
        """Test each subcommand and its options."""
        from main import parse_arguments

        args = parse_arguments(["--sample", "search", "recipes + sugar", "--no-interactive"])
        self.assertTrue(args.sample)
        self.assertEqual(args.command, "search")
        self.assertEqual(args.query, "recipes + sugar")
        self.assertTrue(args.no_interactive)

        args = parse_arguments(["--db", "graph.db", "import", "export.edn", "--format", "edn"])
        self.assertEqual(args.db, "graph.db")
        self.assertEqual(args.format, "edn")

        args = parse_arguments(["chat", "--private"])
        self.assertTrue(args.private)
        self.assertFalse(args.search_only)

    def test_invalid_arguments(self):
        """Test a missing subcommand or an unknown format is rejected."""
        from main import parse_arguments

        with self.assertRaises(SystemExit):
            parse_arguments([])
        with self.assertRaises(SystemExit):
            parse_arguments(["import", "export.csv", "--format", "csv"])


if __name__ == '__main__':
    unittest.main(verbosity=2)
