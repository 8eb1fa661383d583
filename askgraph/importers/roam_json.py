"""
Roam JSON importer for askgraph.

Reads the JSON export of a Roam Research graph: a list of pages, each with
"title", "uid", "create-time", "edit-time" and nested "children" blocks
carrying a "string".
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import RoamBlock, RoamPage
from .base import BaseImporter


class RoamJSONImporter(BaseImporter):
    """
    Importer for Roam Research JSON exports.
    """

    def __init__(self, export_path: str):
        """
        Initialize the Roam JSON importer.

        Args:
            export_path: Path to the exported .json file
        """
        self.export_path = Path(export_path)
        if not self.export_path.is_file():
            logging.warning(f"Roam JSON export not found: {export_path}")
        logging.info(f"Initialized Roam JSON importer for: {self.export_path}")

    def get_all_pages(self) -> List[RoamPage]:
        logging.info(f"Parsing Roam JSON export: {self.export_path}")
        with open(self.export_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, list):
            logging.error(f"Expected a list of pages, got {type(data).__name__}")
            return []

        pages = []
        for item in data:
            page = self._build_page(item)
            if page:
                pages.append(page)
        logging.info(f"Loaded {len(pages)} pages from Roam JSON export")
        return pages

    def _build_page(self, item: Dict[str, Any]) -> Optional[RoamPage]:
        title = item.get("title")
        if not title:
            return None
        uid = item.get("uid") or self._uid_from_title(title)
        return RoamPage(
            uid=uid,
            title=title,
            create_time=item.get("create-time"),
            edit_time=item.get("edit-time"),
            children=[self._build_block(child) for child in item.get("children", [])]
        )

    def _build_block(self, item: Dict[str, Any]) -> RoamBlock:
        return RoamBlock(
            uid=item["uid"],
            content=item.get("string", ""),
            create_time=item.get("create-time"),
            edit_time=item.get("edit-time"),
            children=[self._build_block(child) for child in item.get("children", [])]
        )

    @staticmethod
    def _uid_from_title(title: str) -> str:
        # Older exports omit page uids
        return "p" + hashlib.sha1(title.encode("utf-8")).hexdigest()[:8]
