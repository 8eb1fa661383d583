"""
Agent Manager for askgraph.

This module provides the AgentManager class that merges the default agents of
the registry with the prompt overrides found in configuration, and renders
user prompt templates.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .registry import AgentConfig, AgentRegistry
from ..config import ConfigManager, config as default_config


_TEMPLATE_VARIABLE = re.compile(r'\{([A-Za-z_][A-Za-z0-9_]*)\}')


@dataclass
class AgentDefinition:
    """
    Configuration-based agent definition loaded from YAML.
    """
    name: str
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt_template: Optional[str] = None
    structured: Optional[bool] = None
    timeout: Optional[float] = None

    def apply_to(self, agent: AgentConfig) -> AgentConfig:
        """Return the agent config with every field set here overridden."""
        overrides = {
            key: value for key, value in {
                "description": self.description,
                "system_prompt": self.system_prompt,
                "user_prompt_template": self.user_prompt_template,
                "structured": self.structured,
                "timeout": self.timeout
            }.items() if value is not None
        }
        return replace(agent, **overrides)

    def to_agent_config(self) -> AgentConfig:
        """Build a new agent from a complete definition."""
        missing = [
            field for field in ("description", "system_prompt", "user_prompt_template")
            if getattr(self, field) is None
        ]
        if missing:
            raise ValueError(f"Missing required field(s) {', '.join(missing)} in agent '{self.name}'")
        return AgentConfig(
            name=self.name,
            description=self.description,
            system_prompt=self.system_prompt,
            user_prompt_template=self.user_prompt_template,
            structured=True if self.structured is None else self.structured,
            timeout=60.0 if self.timeout is None else self.timeout
        )


class AgentManager:
    """
    Manages AI agents with configuration-based definitions and template support.
    """

    def __init__(self, agent_registry: Optional[AgentRegistry] = None,
                 config_manager: Optional[ConfigManager] = None):
        """
        Initialize the agent manager.

        Args:
            agent_registry: Optional agent registry to use
            config_manager: Configuration holding 'agents.definitions' overrides
        """
        self.agent_registry = agent_registry or AgentRegistry()
        self.config = config_manager or default_config
        self.agent_definitions: Dict[str, AgentDefinition] = {}
        self._load_agent_definitions()

    def _load_agent_definitions(self):
        """Load agent definitions from configuration."""
        for agent_name, agent_config in self.config.agent_definitions.items():
            if not isinstance(agent_config, dict):
                logging.error(f"Ignoring agent definition '{agent_name}': expected a mapping")
                continue
            try:
                definition = AgentDefinition(
                    name=agent_name,
                    description=agent_config.get('description'),
                    system_prompt=agent_config.get('system_prompt'),
                    user_prompt_template=agent_config.get('user_prompt_template'),
                    structured=agent_config.get('structured'),
                    timeout=agent_config.get('timeout')
                )

                existing = self.agent_registry.get_agent(agent_name)
                if existing:
                    self.agent_registry.register_agent(definition.apply_to(existing))
                else:
                    self.agent_registry.register_agent(definition.to_agent_config())

                self.agent_definitions[agent_name] = definition
                logging.info(f"Loaded agent definition: {agent_name}")

            except ValueError as e:
                logging.error(f"Failed to load agent definition '{agent_name}': {e}")

    def get_agent(self, agent_name: str) -> AgentConfig:
        """
        Get an agent configuration by name.

        Raises:
            ValueError: If agent not found
        """
        agent = self.agent_registry.get_agent(agent_name)
        if not agent:
            raise ValueError(f"Agent '{agent_name}' not found")
        return agent

    def list_agents(self) -> List[str]:
        return self.agent_registry.list_agents()

    def render_user_prompt(self, agent_name: str, **kwargs) -> str:
        """
        Render a user prompt for an agent using its template.

        Args:
            agent_name: Name of the agent
            **kwargs: Template variables

        Returns:
            Rendered user prompt

        Raises:
            ValueError: If agent not found or template rendering fails
        """
        agent = self.get_agent(agent_name)
        try:
            # Use string format method for {variable} syntax
            return agent.user_prompt_template.format(**kwargs)
        except KeyError as e:
            raise ValueError(f"Missing template variable {e} for agent '{agent_name}'")
        except (IndexError, ValueError) as e:
            raise ValueError(f"Failed to render template for agent '{agent_name}': {e}")

    def get_system_prompt(self, agent_name: str) -> str:
        return self.get_agent(agent_name).system_prompt

    def validate_agent_definition(self, agent_name: str) -> Dict[str, Any]:
        """
        Validate an agent definition and return validation results.

        Args:
            agent_name: Name of the agent to validate

        Returns:
            Dictionary with validation results
        """
        results = {
            'valid': True,
            'errors': [],
            'warnings': []
        }

        agent = self.agent_registry.get_agent(agent_name)
        if not agent:
            results['valid'] = False
            results['errors'].append(f"Agent '{agent_name}' not found")
            return results

        if not agent.system_prompt.strip():
            results['valid'] = False
            results['errors'].append("System prompt cannot be empty")

        if not agent.user_prompt_template.strip():
            results['valid'] = False
            results['errors'].append("User prompt template cannot be empty")

        template_vars = self._extract_template_variables(agent.user_prompt_template)
        recommended_vars = {
            'nl-query-interpreter': ['user_query', 'current_date'],
            'nl-question-interpreter': ['user_query', 'search_list'],
            'semantic-expansion': ['term', 'user_query'],
            'preselection-filter': ['user_query', 'blocks', 'max_number'],
            'post-processing': ['user_query', 'blocks'],
            'request-analyzer': ['user_query', 'cached_results'],
            'cache-processor': ['user_query', 'cached_results']
        }
        if agent_name in recommended_vars:
            missing_vars = set(recommended_vars[agent_name]) - set(template_vars)
            if missing_vars:
                results['warnings'].append(
                    f"Missing recommended template variables: {', '.join(sorted(missing_vars))}"
                )

        if agent.timeout <= 0:
            results['valid'] = False
            results['errors'].append("Timeout must be positive")

        return results

    def _extract_template_variables(self, template: str) -> List[str]:
        """Find all {variable} patterns of a template."""
        return list(set(_TEMPLATE_VARIABLE.findall(template)))

    def reload_definitions(self):
        """Reload agent definitions from configuration."""
        self.agent_registry = AgentRegistry()
        self.agent_definitions.clear()
        self.config.reload()
        self._load_agent_definitions()
        logging.info("Agent definitions reloaded")
