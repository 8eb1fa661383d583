"""
Roam EDN importer for askgraph.

Roam exports its whole database as a datascript dump:

    #datascript/DB {:schema {...} :datoms [[e a v tx] ...]}

This importer collects the datoms per entity, then rebuilds pages and their
ordered block trees from :block/children and :block/order.
"""

import collections.abc
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import edn_format

from ..models import RoamBlock, RoamPage
from .base import BaseImporter


edn_format.add_tag("datascript/DB", lambda value: value)


class RoamEDNImporter(BaseImporter):
    """
    Importer for Roam Research EDN exports.
    """

    def __init__(self, export_path: str):
        """
        Initialize the Roam EDN importer.

        Args:
            export_path: Path to the exported .edn file
        """
        self.export_path = Path(export_path)
        self.entities: Dict[int, Dict[str, Any]] = {}
        self.children: Dict[int, List[int]] = {}
        logging.info(f"Initialized Roam EDN importer for: {self.export_path}")

    def get_all_pages(self) -> List[RoamPage]:
        logging.info(f"Parsing Roam EDN export: {self.export_path}")
        with open(self.export_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse(content)

    def parse(self, content: str) -> List[RoamPage]:
        """
        Build page trees from the text of an EDN export.
        """
        parsed_data = edn_format.loads(content)
        if not isinstance(parsed_data, collections.abc.Mapping):
            logging.error(f"Parsed EDN data is not a map, got {type(parsed_data).__name__}")
            return []

        datoms = self._get_value(parsed_data, "datoms", [])
        self._index_datoms(datoms)

        pages = []
        for eid, attrs in self.entities.items():
            if "node/title" not in attrs:
                continue
            page = RoamPage(
                uid=attrs.get("block/uid") or f"page-{eid}",
                title=attrs["node/title"],
                create_time=attrs.get("create/time"),
                edit_time=attrs.get("edit/time"),
                children=[
                    block for block in (self._build_block(child) for child in self._ordered_children(eid))
                    if block is not None
                ]
            )
            pages.append(page)
        logging.info(f"Loaded {len(pages)} pages from {len(datoms)} datoms")
        return pages

    def _index_datoms(self, datoms: Any):
        self.entities = {}
        self.children = {}
        for datom in datoms:
            eid, attribute, value = datom[0], datom[1], datom[2]
            name = self._attribute_name(attribute)
            if name == "block/children":
                self.children.setdefault(eid, []).append(value)
            else:
                self.entities.setdefault(eid, {})[name] = value

    def _ordered_children(self, eid: int) -> List[int]:
        return sorted(
            self.children.get(eid, []),
            key=lambda child: self.entities.get(child, {}).get("block/order", 0)
        )

    def _build_block(self, eid: int) -> Optional[RoamBlock]:
        attrs = self.entities.get(eid)
        if not attrs or "block/uid" not in attrs:
            logging.warning(f"Skipping child entity {eid} without uid")
            return None
        return RoamBlock(
            uid=attrs["block/uid"],
            content=attrs.get("block/string", ""),
            create_time=attrs.get("create/time"),
            edit_time=attrs.get("edit/time"),
            children=[
                block for block in (self._build_block(child) for child in self._ordered_children(eid))
                if block is not None
            ]
        )

    @staticmethod
    def _attribute_name(attribute: Any) -> str:
        name = getattr(attribute, "name", None)
        return name if name else str(attribute).lstrip(":")

    @staticmethod
    def _get_value(data: collections.abc.Mapping, key: str, default: Any = None) -> Any:
        """
        Gets a value from a mapping that may use keywords or strings as keys.
        """
        return data.get(edn_format.Keyword(key), data.get(key, default))
