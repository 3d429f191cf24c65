# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe CLI Output Formatter."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Union

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def get_value(data: Dict[str, Any], key: str) -> str:
    """Get the display string of `key` in `data`."""
    value = data.get(key)
    if isinstance(value, Enum):
        value = value.value
    if value is None:
        return "-"
    return str(value)


@dataclass
class Formatter:
    """Formatter helps data formatting and visualization."""

    name: str
    fields: List[str]
    headers: List[str]

    def __post_init__(self) -> None:
        """Post-init formatter."""
        assert len(self.fields) == len(self.headers)
        self._console = Console()

    def render(self, data: Union[List[Dict[str, Any]], Dict[str, Any]]) -> None:
        """Print the rendered output."""
        raise NotImplementedError  # pragma: no cover


@dataclass
class TableFormatter(Formatter):
    """Table formatter for visualizing tabulated data."""

    def get_renderable(self, data: List[Dict[str, Any]]) -> Table:
        """Get rendered visualizer."""
        table = Table(title=self.name, box=box.SIMPLE)
        for header in self.headers:
            table.add_column(header)
        for d in data:
            table.add_row(*[get_value(d, f) for f in self.fields])
        return table

    def render(self, data: Union[List[Dict[str, Any]], Dict[str, Any]]) -> None:
        """Print the rendered output."""
        if not isinstance(data, list):
            data = [data]
        self._console.print(self.get_renderable(data))


@dataclass
class PanelFormatter(Formatter):
    """Panel formatter for visualizing a single record."""

    def get_renderable(self, data: Dict[str, Any]) -> Panel:
        """Get rendered visualizer."""
        table = Table(box=None, show_header=False)
        table.add_column("k", style="dim bold")
        table.add_column("v")
        for header, f in zip(self.headers, self.fields):
            table.add_row(header, get_value(data, f))
        return Panel(table, title=self.name, expand=False)

    def render(self, data: Union[List[Dict[str, Any]], Dict[str, Any]]) -> None:
        """Print the rendered output."""
        records = data if isinstance(data, list) else [data]
        for record in records:
            self._console.print(self.get_renderable(record))
