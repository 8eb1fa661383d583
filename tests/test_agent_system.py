"""
Tests for the AI agent system.

This module tests the default agents of the registry, prompt overrides from
configuration, the template system, and the AgentRunner talking to Ollama.
"""

import json
import unittest
import tempfile
import os
from pathlib import Path
from unittest.mock import Mock, patch, MagicMock

import httpx

from askgraph.agents.manager import AgentManager, AgentDefinition
from askgraph.agents.registry import AgentRegistry, AgentConfig
from askgraph.agents.runner import AgentRunner, parse_structured, resolve_structured
from askgraph.cancellation import CancelToken
from askgraph.config import ConfigManager
from askgraph.errors import CancellationError, InterpretationError, LLMError
from askgraph.models import ParsedResponse, QueryInterpretation, RawResponse, RoutingDecision

from tests.fakes import make_config, make_store


DEFAULT_AGENTS = [
    "nl-query-interpreter",
    "nl-question-interpreter",
    "semantic-expansion",
    "preselection-filter",
    "post-processing",
    "request-analyzer",
    "cache-processor"
]


class TestAgentRegistry(unittest.TestCase):
    """Test the AgentRegistry class."""

    def test_default_agents(self):
        """Test every collaborator of the search agent is registered."""
        registry = AgentRegistry()
        self.assertEqual(sorted(registry.list_agents()), sorted(DEFAULT_AGENTS))

        self.assertTrue(registry.get_agent("nl-query-interpreter").structured)
        self.assertFalse(registry.get_agent("post-processing").structured)
        self.assertFalse(registry.get_agent("cache-processor").structured)
        self.assertIsNone(registry.get_agent("non_existent_agent"))

    def test_register_agent(self):
        """Test registering a new agent."""
        registry = AgentRegistry()
        registry.register_agent(AgentConfig(
            name="summarizer",
            description="Summarizes blocks",
            system_prompt="You summarize.",
            user_prompt_template="Summarize: {blocks}"
        ))
        self.assertIn("summarizer", registry.list_agents())


class TestAgentManager(unittest.TestCase):
    """Test the AgentManager class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

        # Override one default agent, add one, and give an incomplete one
        test_config = """
agents:
  definitions:
    post-processing:
      system_prompt: "Answer in French."
      timeout: 120.0

    summarizer:
      description: "Summarizes blocks"
      system_prompt: "You summarize blocks."
      user_prompt_template: "Summarize for {user_query}: {blocks}"
      structured: false

    incomplete:
      description: "No prompts"

    broken: "not a mapping"
"""

        with open(self.config_path, 'w') as f:
            f.write(test_config)

        self.config_manager = ConfigManager(str(self.config_path))
        self.agent_manager = AgentManager(config_manager=self.config_manager)

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_override_keeps_other_fields(self):
        """Test a partial definition only overrides the fields it sets."""
        agent = self.agent_manager.get_agent("post-processing")

        self.assertEqual(agent.system_prompt, "Answer in French.")
        self.assertEqual(agent.timeout, 120.0)
        self.assertFalse(agent.structured)
        self.assertIn("{blocks}", agent.user_prompt_template)

    def test_new_agent(self):
        """Test a complete definition adds an agent."""
        agent = self.agent_manager.get_agent("summarizer")

        self.assertEqual(agent.description, "Summarizes blocks")
        self.assertFalse(agent.structured)
        self.assertEqual(agent.timeout, 60.0)
        self.assertIn("summarizer", self.agent_manager.agent_definitions)

    def test_invalid_definitions_are_skipped(self):
        """Test incomplete or malformed definitions are ignored."""
        self.assertNotIn("incomplete", self.agent_manager.list_agents())
        self.assertNotIn("broken", self.agent_manager.list_agents())
        self.assertNotIn("incomplete", self.agent_manager.agent_definitions)

    def test_agent_definition_to_config(self):
        """Test building an agent from a definition."""
        definition = AgentDefinition(
            name="test",
            description="Test agent",
            system_prompt="You are a test agent.",
            user_prompt_template="Process: {content}"
        )
        agent = definition.to_agent_config()

        self.assertEqual(agent.name, "test")
        self.assertTrue(agent.structured)

        with self.assertRaises(ValueError):
            AgentDefinition(name="partial", description="Only a description").to_agent_config()

    def test_render_user_prompt(self):
        """Test template rendering."""
        rendered = self.agent_manager.render_user_prompt(
            "summarizer", user_query="budget", blocks="- ((abc))"
        )
        self.assertEqual(rendered, "Summarize for budget: - ((abc))")

        # Missing variable
        with self.assertRaises(ValueError):
            self.agent_manager.render_user_prompt("summarizer", user_query="budget")

        # Non-existent agent
        with self.assertRaises(ValueError):
            self.agent_manager.render_user_prompt("non_existent_agent", content="x")

    def test_get_system_prompt(self):
        """Test getting system prompts."""
        self.assertEqual(self.agent_manager.get_system_prompt("summarizer"), "You summarize blocks.")

        with self.assertRaises(ValueError):
            self.agent_manager.get_system_prompt("non_existent_agent")

    def test_validate_agent_definition(self):
        """Test agent definition validation."""
        for name in DEFAULT_AGENTS:
            results = self.agent_manager.validate_agent_definition(name)
            self.assertTrue(results['valid'], name)
            self.assertEqual(results['warnings'], [], name)

        self.agent_manager.agent_registry.register_agent(AgentConfig(
            name="post-processing",
            description="Broken",
            system_prompt="",
            user_prompt_template="No variable",
            timeout=-5.0
        ))
        invalid_results = self.agent_manager.validate_agent_definition("post-processing")
        self.assertFalse(invalid_results['valid'])
        self.assertEqual(len(invalid_results['errors']), 2)
        self.assertEqual(len(invalid_results['warnings']), 1)

        nonexistent_results = self.agent_manager.validate_agent_definition("non_existent_agent")
        self.assertFalse(nonexistent_results['valid'])
        self.assertIn("not found", nonexistent_results['errors'][0])


class TestStructuredReplies(unittest.TestCase):
    """Test normalization of model replies."""

    def test_valid_json(self):
        """Test a conforming reply is parsed, code fences included."""
        reply = parse_structured('```json\n{"searchList": "budget", "nbOfResults": 3}\n```',
                                 QueryInterpretation)

        self.assertIsInstance(reply, ParsedResponse)
        self.assertEqual(reply.value.searchList, "budget")
        self.assertEqual(reply.value.nbOfResults, 3)

    def test_json_inside_text(self):
        """Test a JSON object surrounded by prose is still found."""
        reply = parse_structured('Here it is: {"decision": "use_cache"} Hope it helps.', RoutingDecision)
        self.assertEqual(reply.value.decision, "use_cache")

    def test_raw_replies(self):
        """Test unusable replies are kept as raw fields."""
        text_reply = parse_structured("I do not know", QueryInterpretation)
        self.assertIsInstance(text_reply, RawResponse)
        self.assertEqual(text_reply.fields, {"content": "I do not know"})

        wrong_reply = parse_structured('{"decision": "maybe"}', RoutingDecision)
        self.assertIsInstance(wrong_reply, RawResponse)
        self.assertEqual(wrong_reply.fields, {"decision": "maybe"})

    def test_resolve_nested_arguments(self):
        """Test arguments nested under a known key are recovered."""
        reply = RawResponse(fields={"name": "search", "arguments": {"searchList": "budget"}})
        self.assertEqual(resolve_structured(reply, QueryInterpretation).searchList, "budget")

    def test_resolve_failure(self):
        """Test an unrecoverable reply raises InterpretationError with the node name."""
        with self.assertRaises(InterpretationError) as raised:
            resolve_structured(RawResponse(fields={"content": "no"}), QueryInterpretation,
                               "nl-query-interpreter")
        self.assertEqual(raised.exception.node, "nl-query-interpreter")


def ollama_reply(text):
    response = Mock()
    response.json.return_value = {"response": text}
    return response


class TestAgentRunner(unittest.TestCase):
    """Test AgentRunner against a mocked Ollama server."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = make_config({"ai": {"ollama_host": "http://ollama:11434", "model": "test-model"}})
        self.client = MagicMock()

    def runner(self, **kwargs):
        return AgentRunner(config_manager=self.config, client=self.client, **kwargs)

    def test_generate_payload(self):
        """Test structured agents send their system prompt and JSON schema."""
        self.client.post.return_value = ollama_reply('{"searchList": "budget"}')
        reply = self.runner().interpret_query("notes about the budget", "2024/03/14", search_only=True)

        self.assertEqual(reply.value.searchList, "budget")
        url = self.client.post.call_args[0][0]
        payload = self.client.post.call_args[1]["json"]
        self.assertEqual(url, "http://ollama:11434/api/generate")
        self.assertEqual(payload["model"], "test-model")
        self.assertFalse(payload["stream"])
        self.assertIn("searchList", payload["system"])
        self.assertEqual(payload["format"]["title"], "QueryInterpretation")
        self.assertIn("Today's date is 2024/03/14.", payload["prompt"])
        self.assertIn("Search only mode", payload["prompt"])
        self.assertIn("User request: notes about the budget", payload["prompt"])

    def test_retry_instruction(self):
        """Test a retry hint is added to the prompt, a hint equal to the request is not."""
        self.client.post.return_value = ollama_reply('{"searchList": "budget"}')
        runner = self.runner()

        runner.interpret_query("budget", "2024/03/14", retry_instruction="only 2024")
        self.assertIn("Indications on what to do better: only 2024", self.client.post.call_args[1]["json"]["prompt"])

        runner.interpret_query("budget", "2024/03/14", retry_instruction="budget")
        self.assertNotIn("Indications", self.client.post.call_args[1]["json"]["prompt"])

    def test_text_agent(self):
        """Test text agents send no schema and return stripped text."""
        self.client.post.return_value = ollama_reply("```\nThe budget is under control.\n```")
        answer = self.runner().post_process("budget?", "0) Block ((abc))")

        self.assertEqual(answer, "The budget is under control.")
        self.assertNotIn("format", self.client.post.call_args[1]["json"])

    def test_semantic_expansion(self):
        """Test variations are returned, and an unusable reply gives none."""
        self.client.post.return_value = ollama_reply('{"variations": ["automobile", "vehicle"]}')
        expand = self.runner().semantic_expander()
        self.assertEqual(expand("car", "car insurance"), ["automobile", "vehicle"])

        self.client.post.return_value = ollama_reply("no idea")
        self.assertEqual(expand("car", "car insurance"), [])

    def test_analyze_request(self):
        """Test the routing decision is validated."""
        self.client.post.return_value = ollama_reply('{"decision": "need_new_search", "reformulatedQuery": "x"}')
        self.assertEqual(self.runner().analyze_request("x", "", "").decision, "need_new_search")

        self.client.post.return_value = ollama_reply('{"decision": "later"}')
        with self.assertRaises(InterpretationError):
            self.runner().analyze_request("x", "", "")

    def test_http_errors(self):
        """Test transport and HTTP failures raise LLMError."""
        failing = Mock()
        failing.raise_for_status.side_effect = httpx.HTTPStatusError(
            "500 Internal Server Error", request=Mock(), response=Mock()
        )
        self.client.post.return_value = failing
        with self.assertRaises(LLMError):
            self.runner().post_process("budget?", "")

        self.client.post.side_effect = httpx.ConnectError("connection refused")
        with self.assertRaises(LLMError):
            self.runner().post_process("budget?", "")

    def test_cancelled_before_call(self):
        """Test no request is sent once the request is cancelled."""
        token = CancelToken()
        token.cancel()
        with self.assertRaises(CancellationError):
            self.runner().post_process("budget?", "", cancel_token=token)
        self.client.post.assert_not_called()

    def test_calls_are_logged(self):
        """Test every call is logged with its request id, failed ones included."""
        store = make_store([])
        try:
            runner = self.runner(store=store)
            self.client.post.return_value = ollama_reply('{"relevantUids": ["abc"]}')
            runner.preselect("budget?", "0) Block ((abc))", 3, request_id="req-1")

            self.client.post.side_effect = httpx.ConnectError("connection refused")
            with self.assertRaises(LLMError):
                runner.post_process("budget?", "", request_id="req-1")

            calls = store.get_ai_agent_calls(request_id="req-1")
            self.assertEqual([call["agent_name"] for call in calls], ["post-processing", "preselection-filter"])
            self.assertFalse(calls[0]["success"])
            self.assertIn("Failed to connect", calls[0]["error_message"])
            self.assertEqual(json.loads(calls[1]["input_data"])["max_number"], 3)
            self.assertEqual(calls[1]["model_name"], "test-model")
        finally:
            store.disconnect()

    @patch('askgraph.agents.runner.httpx.Client')
    def test_default_client(self, mock_client):
        """Test a client is created with the configured timeout when none is given."""
        runner = AgentRunner(config_manager=self.config)
        mock_client.assert_called_once_with(timeout=60.0)

        runner.close()
        mock_client.return_value.close.assert_called_once()


if __name__ == '__main__':
    unittest.main(verbosity=2)
