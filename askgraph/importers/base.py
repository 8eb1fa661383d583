"""
Base importer interface for askgraph.

This module defines the abstract interface that all graph importers must implement.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models import RoamPage


class BaseImporter(ABC):
    """
    Abstract base class for all graph importers.

    Each importer converts data from a specific export format (Roam JSON,
    Roam EDN, ...) into the standardized RoamPage tree format.
    """

    @abstractmethod
    def get_all_pages(self) -> List[RoamPage]:
        """
        Retrieve all pages from the data source.

        Returns:
            List of RoamPage objects, each holding its ordered block tree
        """
        pass
