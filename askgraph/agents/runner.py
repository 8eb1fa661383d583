"""
AI Agent runner for askgraph.

This module handles communication with Ollama and runs the LLM collaborators
of the search agent: query interpretation, semantic expansion, preselection,
post-processing and conversation routing.
"""

import httpx
import json
import re
import time
from typing import Any, Callable, Dict, List, Optional, Type
import logging

import duckdb
from pydantic import BaseModel, ValidationError

from ..cancellation import CancelToken, check_cancelled
from ..config import ConfigManager, config as default_config
from ..database import GraphStore
from ..errors import InterpretationError, LLMError
from ..models import (
    AlternativeSearchList, LLMResponse, ParsedResponse, Preselection,
    QueryInterpretation, RawResponse, RoutingDecision, SemanticVariations
)
from .manager import AgentManager


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# Keys under which some models nest the arguments of a structured reply
_NESTED_KEYS = ("input", "arguments", "parameters", "properties")


def strip_code_fences(text: str) -> str:
    """Remove a markdown code block wrapping, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_structured(text: str, schema: Type[BaseModel]) -> LLMResponse:
    """
    Normalize a model reply into the parsed/raw tagged union.

    Args:
        text: Raw text returned by the model
        schema: Pydantic model the reply should conform to

    Returns:
        ParsedResponse holding a schema instance, or RawResponse holding the
        JSON fields found (or the text under 'content')
    """
    cleaned = strip_code_fences(text)
    data: Any = None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        found = _JSON_OBJECT.search(cleaned)
        if found:
            try:
                data = json.loads(found.group(0))
            except json.JSONDecodeError:
                data = None

    if not isinstance(data, dict):
        return RawResponse(fields={"content": text}, error="Reply is not a JSON object")

    try:
        return ParsedResponse(value=schema.model_validate(data))
    except ValidationError as e:
        return RawResponse(fields=data, error=str(e))


def resolve_structured(response: LLMResponse, schema: Type[BaseModel], node: Optional[str] = None):
    """
    Turn a tagged reply into a schema instance.

    Raw replies are validated once more, looking into nested argument objects.

    Raises:
        InterpretationError: If no schema instance can be recovered
    """
    if isinstance(response, ParsedResponse):
        if isinstance(response.value, schema):
            return response.value
        candidates = [response.value.model_dump() if isinstance(response.value, BaseModel) else response.value]
    else:
        candidates = [response.fields]
        candidates.extend(
            response.fields[key] for key in _NESTED_KEYS
            if isinstance(response.fields.get(key), dict)
        )

    errors = []
    for candidate in candidates:
        try:
            return schema.model_validate(candidate)
        except ValidationError as e:
            errors.append(str(e))
    detail = errors[0] if errors else getattr(response, "error", None)
    raise InterpretationError(f"Unexpected reply for {schema.__name__}: {detail}", node=node)


def retry_block(retry_instruction: Optional[str], user_query: str) -> str:
    """Prompt addition asking for a better interpretation, if the user gave a hint."""
    if not retry_instruction or retry_instruction == user_query:
        return ""
    return (
        "\n\nThe user asks for a new and, if possible, better interpretation of the request. "
        f"Indications on what to do better: {retry_instruction}"
    )


class AgentRunner:
    """
    Manages communication with Ollama and runs AI agents.
    """

    def __init__(self, ollama_host: Optional[str] = None, model: Optional[str] = None,
                 store: Optional[GraphStore] = None,
                 agent_manager: Optional[AgentManager] = None,
                 config_manager: Optional[ConfigManager] = None,
                 client: Optional[httpx.Client] = None):
        """
        Initialize the agent runner.

        Args:
            ollama_host: The Ollama server URL (defaults to config value)
            model: The model name to use for inference (defaults to config value)
            store: Optional graph store where every call is logged
            agent_manager: Agents and prompt templates (defaults to one built from config)
            config_manager: Configuration to read defaults from
            client: Optional preconfigured HTTP client
        """
        self.config = config_manager or default_config
        self.ollama_host = ollama_host or self.config.ollama_host
        self.model = model or self.config.model_name
        self.client = client or httpx.Client(timeout=self.config.ollama_timeout)
        self.db = store
        self.agents = agent_manager or AgentManager(config_manager=self.config)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def close(self):
        self.client.close()

    def _call_ollama_sync(
        self,
        prompt: str,
        system_prompt: str = "",
        agent_name: str = "unknown",
        input_data: str = "",
        json_schema: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> str:
        """
        Make a request to Ollama, with AI logging.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt for agent persona
            agent_name: Name of the agent making the call
            input_data: Original input data for logging
            json_schema: JSON schema constraining the reply, for structured agents
            cancel_token: Checked before and after the request
            request_id: Search request the call belongs to

        Returns:
            The model's response text

        Raises:
            LLMError: If Ollama cannot be reached or answers with an error
            CancellationError: If the request was cancelled
        """
        check_cancelled(cancel_token, f"before {agent_name}")

        start_time = time.time()
        success = False
        error_message = None
        raw_response = ""

        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False
        }
        if system_prompt:
            payload["system"] = system_prompt
        if json_schema:
            payload["format"] = json_schema

        try:
            response = self.client.post(
                f"{self.ollama_host}/api/generate",
                json=payload
            )
            response.raise_for_status()

            result = response.json()
            raw_response = result.get("response", "")
            success = True

        except httpx.HTTPStatusError as e:
            error_message = f"Ollama request failed: {e}"
            raise LLMError(error_message) from e
        except httpx.RequestError as e:
            error_message = f"Failed to connect to Ollama: {e}"
            raise LLMError(error_message) from e
        except ValueError as e:
            error_message = f"Invalid response from Ollama: {e}"
            raise LLMError(error_message) from e
        finally:
            # Log the AI call to database for reproducibility
            execution_time_ms = int((time.time() - start_time) * 1000)
            self._log_call(agent_name, input_data, system_prompt, prompt, raw_response,
                           success, error_message, execution_time_ms, request_id)

        check_cancelled(cancel_token, f"after {agent_name}")
        return raw_response

    def _log_call(self, agent_name, input_data, system_prompt, prompt, raw_response,
                  success, error_message, execution_time_ms, request_id):
        if not self.db or not self.db.connection:
            return
        try:
            self.db.log_ai_agent_call(
                agent_name=agent_name,
                input_data=input_data,
                system_prompt=system_prompt,
                user_prompt=prompt,
                model_name=self.model,
                raw_response=raw_response,
                success=success,
                error_message=error_message,
                execution_time_ms=execution_time_ms,
                request_id=request_id
            )
        except duckdb.Error as log_error:
            logging.warning(f"Failed to log AI agent call: {log_error}")

    def run_structured(
        self,
        agent_name: str,
        schema: Type[BaseModel],
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None,
        **template_vars
    ) -> LLMResponse:
        """
        Run an agent expected to answer with JSON matching a schema.

        Returns:
            The tagged reply, see parse_structured
        """
        prompt = self.agents.render_user_prompt(agent_name, **template_vars)
        text = self._call_ollama_sync(
            prompt=prompt,
            system_prompt=self.agents.get_system_prompt(agent_name),
            agent_name=agent_name,
            input_data=json.dumps(template_vars, default=str),
            json_schema=schema.model_json_schema(),
            cancel_token=cancel_token,
            request_id=request_id
        )
        reply = parse_structured(text, schema)
        if isinstance(reply, RawResponse):
            logging.warning(f"{agent_name} reply does not match {schema.__name__}: {reply.error}")
        return reply

    def run_text(
        self,
        agent_name: str,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None,
        **template_vars
    ) -> str:
        """Run an agent answering with free text."""
        prompt = self.agents.render_user_prompt(agent_name, **template_vars)
        text = self._call_ollama_sync(
            prompt=prompt,
            system_prompt=self.agents.get_system_prompt(agent_name),
            agent_name=agent_name,
            input_data=json.dumps(template_vars, default=str),
            cancel_token=cancel_token,
            request_id=request_id
        )
        return strip_code_fences(text)

    def interpret_query(
        self,
        user_query: str,
        current_date: str,
        retry_instruction: Optional[str] = None,
        search_only: bool = False,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> LLMResponse:
        """Natural language request to QueryInterpretation."""
        instructions = []
        if search_only:
            instructions.append("Search only mode: set 'isPostProcessingNeeded' to false.")
        if "<" in user_query or ">" in user_query:
            instructions.append(
                "The request already states a hierarchy with '>' or '<': keep it as written "
                "and set 'isInferenceNeeded' to false."
            )
        return self.run_structured(
            "nl-query-interpreter", QueryInterpretation,
            cancel_token=cancel_token, request_id=request_id,
            current_date=current_date,
            mode_instructions="\n".join(instructions),
            user_query=user_query,
            retry_instruction=retry_block(retry_instruction, user_query)
        )

    def interpret_question(
        self,
        user_query: str,
        search_list: str,
        retry_instruction: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> LLMResponse:
        """Question to AlternativeSearchList."""
        return self.run_structured(
            "nl-question-interpreter", AlternativeSearchList,
            cancel_token=cancel_token, request_id=request_id,
            user_query=user_query,
            search_list=search_list,
            retry_instruction=retry_block(retry_instruction, user_query)
        )

    def expand_term(
        self,
        term: str,
        user_query: str,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> List[str]:
        """
        Semantic variations of a term marked with '~'.

        An unusable reply gives no variation; the term itself is still searched.
        """
        reply = self.run_structured(
            "semantic-expansion", SemanticVariations,
            cancel_token=cancel_token, request_id=request_id,
            term=term, user_query=user_query
        )
        try:
            return resolve_structured(reply, SemanticVariations, "semantic-expansion").variations
        except InterpretationError as e:
            logging.warning(f"No semantic variation for '{term}': {e}")
            return []

    def semantic_expander(self, cancel_token: Optional[CancelToken] = None,
                          request_id: Optional[str] = None) -> Callable[[str, str], List[str]]:
        """Expander bound to a request, for the filter compiler."""
        def expand(term: str, user_query: str) -> List[str]:
            return self.expand_term(term, user_query, cancel_token, request_id)
        return expand

    def preselect(
        self,
        user_query: str,
        blocks: str,
        max_number: int,
        retry_instruction: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> LLMResponse:
        """Rendered candidate blocks to Preselection."""
        return self.run_structured(
            "preselection-filter", Preselection,
            cancel_token=cancel_token, request_id=request_id,
            user_query=user_query,
            blocks=blocks,
            max_number=max_number,
            retry_instruction=retry_block(retry_instruction, user_query)
        )

    def post_process(
        self,
        user_query: str,
        blocks: str,
        retry_instruction: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> str:
        """Rendered selected blocks to the final answer text."""
        return self.run_text(
            "post-processing",
            cancel_token=cancel_token, request_id=request_id,
            user_query=user_query,
            blocks=blocks,
            retry_instruction=retry_block(retry_instruction, user_query)
        )

    def analyze_request(
        self,
        user_query: str,
        history: str,
        cached_results: str,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> RoutingDecision:
        """
        Cache or new search for a conversation turn.

        Raises:
            InterpretationError: If the reply is not a routing decision
        """
        reply = self.run_structured(
            "request-analyzer", RoutingDecision,
            cancel_token=cancel_token, request_id=request_id,
            user_query=user_query, history=history, cached_results=cached_results
        )
        return resolve_structured(reply, RoutingDecision, "request-analyzer")

    def process_cache(
        self,
        user_query: str,
        cached_results: str,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None
    ) -> str:
        """Answer from cached results, or an 'INSUFFICIENT_CACHE:' / 'HYBRID:' signal."""
        return self.run_text(
            "cache-processor",
            cancel_token=cancel_token, request_id=request_id,
            user_query=user_query, cached_results=cached_results
        )
