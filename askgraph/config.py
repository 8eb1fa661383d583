"""
Configuration management for askgraph.

This module handles loading and accessing configuration values from config.yaml.
It provides a centralized way to tune search limits, LLM access and conversation
behaviour without changing code.
"""

import yaml
import copy
from pathlib import Path
from typing import Any, Dict, Optional
import logging


DEFAULT_CONFIG: Dict[str, Any] = {
    "ai": {
        "ollama_host": "http://localhost:11434",
        "model": "gemma3",
        "timeout": 60.0
    },
    "database": {
        "filename": "askgraph.db"
    },
    "paths": {
        "log_file": "askgraph.log"
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    },
    "search": {
        "default_display_count": 10,
        "case_sensitive": False,
        "recursion_limit": 50,
        "max_results_before_preselection": 100,
        "post_processing_overfetch": 5,
        "preselection_cap": 20,
        "preselection_factor": 3,
        "sibling_max_filters": 3,
        "sibling_candidate_cap": 50,
        "child_samples_per_filter": 3,
        "preselection_word_limit": 100,
        "post_processing_word_limit": 1000,
        "path_depth": 6,
        "path_word_limit": 30
    },
    "conversation": {
        "max_cached_results": 10,
        "max_history": 20,
        "user_choice_timeout": 300,
        "llm_routing": True
    },
    "agents": {
        "definitions": {}
    }
}


class ConfigManager:
    """
    Manages configuration loading and access for askgraph.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file, merged over the defaults."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}

            self._config = self._merge(self._get_default_config(), loaded)
            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return copy.deepcopy(DEFAULT_CONFIG)

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = self._merge(base[key], value)
            else:
                base[key] = value
        return base

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "ai.model")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("ai.model")  # Returns "gemma3"
            config.get("search.sibling_candidate_cap")  # Returns 50
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def ollama_host(self) -> str:
        """Get Ollama host URL."""
        return self.get("ai.ollama_host", "http://localhost:11434")

    @property
    def model_name(self) -> str:
        """Get AI model name."""
        return self.get("ai.model", "gemma3")

    @property
    def ollama_timeout(self) -> float:
        """Get Ollama timeout."""
        return self.get("ai.timeout", 60.0)

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "askgraph.db")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "askgraph.log")

    @property
    def default_display_count(self) -> int:
        return self.get("search.default_display_count", 10)

    @property
    def sibling_max_filters(self) -> int:
        """Sibling search only runs below this number of inclusion filters."""
        return self.get("search.sibling_max_filters", 3)

    @property
    def sibling_candidate_cap(self) -> int:
        """Maximum number of candidate blocks sampled for the sibling search."""
        return self.get("search.sibling_candidate_cap", 50)

    @property
    def child_samples_per_filter(self) -> int:
        return self.get("search.child_samples_per_filter", 3)

    @property
    def max_cached_results(self) -> int:
        return self.get("conversation.max_cached_results", 10)

    @property
    def max_history(self) -> int:
        return self.get("conversation.max_history", 20)

    @property
    def user_choice_timeout(self) -> float:
        """Seconds a paused search waits for a user decision."""
        return self.get("conversation.user_choice_timeout", 300)

    @property
    def agent_definitions(self) -> Dict[str, Any]:
        """Get agent definitions from configuration."""
        return self.get("agents.definitions", {}) or {}

    def get_agent_definition(self, agent_name: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific agent definition by name.

        Args:
            agent_name: Name of the agent

        Returns:
            Agent definition dictionary or None if not found
        """
        return self.agent_definitions.get(agent_name)


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
