"""
Sample importer for askgraph.

This module provides a small built-in Roam graph for demos and for testing
the search pipeline without an export file.
"""

from datetime import datetime
from typing import List

from ..models import RoamBlock, RoamPage
from .base import BaseImporter


def _ms(year: int, month: int, day: int, hour: int = 12) -> int:
    return int(datetime(year, month, day, hour).timestamp() * 1000)


class SampleImporter(BaseImporter):
    """
    Importer that returns a hardcoded sample graph.
    """

    def get_all_pages(self) -> List[RoamPage]:
        return [
            RoamPage(
                uid="03-14-2024",
                title="March 14th, 2024",
                create_time=_ms(2024, 3, 14),
                edit_time=_ms(2024, 3, 14),
                children=[
                    RoamBlock(
                        uid="mtg-phx-01",
                        content="Meeting with [[Jane Doe]] about [[Project Phoenix]]",
                        edit_time=_ms(2024, 3, 14, 10),
                        children=[
                            RoamBlock(uid="mtg-phx-02", content="urgent: fix the login flow",
                                      edit_time=_ms(2024, 3, 14, 10)),
                            RoamBlock(uid="mtg-phx-03", content="budget review postponed to April",
                                      edit_time=_ms(2024, 3, 14, 11)),
                        ]
                    ),
                    RoamBlock(
                        uid="read-pp-01",
                        content="Finished reading [[The Pragmatic Programmer]] #book",
                        edit_time=_ms(2024, 3, 14, 21),
                        children=[
                            RoamBlock(uid="read-pp-02", content="Key takeaway: always use version control",
                                      edit_time=_ms(2024, 3, 14, 21)),
                        ]
                    ),
                ]
            ),
            RoamPage(
                uid="03-15-2024",
                title="March 15th, 2024",
                create_time=_ms(2024, 3, 15),
                edit_time=_ms(2024, 3, 15),
                children=[
                    RoamBlock(
                        uid="cake-0001",
                        content="Baked a cake with sugar and vanilla for [[Jane Doe]]",
                        edit_time=_ms(2024, 3, 15, 16)
                    ),
                    RoamBlock(
                        uid="idea-0001",
                        content="Idea: a [[Project Phoenix]] dashboard",
                        edit_time=_ms(2024, 3, 15, 18),
                        children=[
                            RoamBlock(uid="idea-0002", content="show weekly budget burn",
                                      edit_time=_ms(2024, 3, 15, 18)),
                        ]
                    ),
                ]
            ),
            RoamPage(
                uid="recipes01",
                title="Recipes",
                create_time=_ms(2023, 11, 2),
                edit_time=_ms(2024, 1, 8),
                children=[
                    RoamBlock(
                        uid="recipe-001",
                        content="Vanilla custard",
                        edit_time=_ms(2023, 11, 2),
                        children=[
                            RoamBlock(uid="recipe-002", content="200g sugar", edit_time=_ms(2023, 11, 2)),
                            RoamBlock(uid="recipe-003", content="1 vanilla pod", edit_time=_ms(2023, 11, 2)),
                        ]
                    ),
                    RoamBlock(
                        uid="recipe-010",
                        content="Lemon tart",
                        edit_time=_ms(2024, 1, 8),
                        children=[
                            RoamBlock(uid="recipe-011", content="150g sugar", edit_time=_ms(2024, 1, 8)),
                            RoamBlock(uid="recipe-012", content="3 lemons", edit_time=_ms(2024, 1, 8)),
                        ]
                    ),
                ]
            ),
            RoamPage(
                uid="phoenix01",
                title="Project Phoenix",
                create_time=_ms(2024, 2, 1),
                edit_time=_ms(2024, 3, 10),
                children=[
                    RoamBlock(
                        uid="phx-goal-1",
                        content="Goals",
                        edit_time=_ms(2024, 2, 1),
                        children=[
                            RoamBlock(uid="phx-goal-2", content="Ship the beta before summer",
                                      edit_time=_ms(2024, 2, 1)),
                            RoamBlock(uid="phx-goal-3", content="Keep the budget under control",
                                      edit_time=_ms(2024, 3, 10)),
                        ]
                    ),
                ]
            ),
        ]
