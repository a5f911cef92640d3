"""Tool registry: the catalog of invocable tools a dispatcher can expose.

Tools themselves (the cloud-API actions) live outside this package. Each one
is reached through the uniform :class:`Tool` contract::

    result = await tool.invoke(command, params, cancel_token)

Tool metadata (description and input schema) is kept separately so that a
tool without metadata can still be registered; such tools are callable but
never listed.
"""

import asyncio
import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from mcp.types import Tool as ToolMetadata
from pydantic import ValidationError

from awsflow_mcp.exceptions import ToolMetadataError
from awsflow_mcp.types import JsonValue

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SCHEMA: dict[str, object] = {"type": "object"}


class CancellationToken:
    """Per-call cancellation flag handed to :meth:`Tool.invoke`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()


@runtime_checkable
class Tool(Protocol):
    """Uniform contract implemented by every registered tool."""

    async def invoke(
        self,
        command: str,
        params: dict[str, JsonValue],
        cancel_token: CancellationToken,
    ) -> object: ...


@dataclass(frozen=True)
class ToolRecord:
    """A named tool plus its optional listing metadata."""

    name: str
    tool: Tool
    metadata: ToolMetadata | None = None


class ToolRegistry:
    """Read-only mapping of tool name to :class:`ToolRecord`.

    Args:
        records: Tool records; a later record replaces an earlier one with
            the same name.
    """

    def __init__(self, records: Iterable[ToolRecord] = ()) -> None:
        self._records: dict[str, ToolRecord] = {}
        for record in records:
            self._records[record.name] = record

    @classmethod
    def from_tools(
        cls,
        tools: Mapping[str, Tool],
        metadata: Mapping[str, ToolMetadata] | None = None,
    ) -> "ToolRegistry":
        """Build a registry from a name → tool mapping and optional metadata."""
        metadata = metadata or {}
        return cls(
            ToolRecord(name=name, tool=tool, metadata=metadata.get(name))
            for name, tool in tools.items()
        )

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __iter__(self) -> Iterator[ToolRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def names(self) -> list[str]:
        """Registered tool names in registration order."""
        return list(self._records)

    def get(self, name: str) -> ToolRecord | None:
        return self._records.get(name)

    def select(self, enabled: Iterable[str]) -> dict[str, ToolRecord]:
        """Records whose name is in *enabled*, in registration order."""
        wanted = set(enabled)
        return {
            name: record for name, record in self._records.items() if name in wanted
        }


# ── Metadata loading ─────────────────────────────────────────────────────


def _entry_to_metadata(entry: Mapping[str, object]) -> ToolMetadata:
    description = (
        entry.get("modelDescription")
        or entry.get("userDescription")
        or entry.get("description")
        or ""
    )
    return ToolMetadata(
        name=str(entry["name"]),
        description=str(description),
        inputSchema=entry.get("inputSchema") or dict(DEFAULT_INPUT_SCHEMA),
    )


def load_tool_metadata(path: Path) -> dict[str, ToolMetadata]:
    """Load tool metadata from a JSON file.

    Two shapes are accepted: a plain array of tool entries, or an extension
    manifest whose ``contributes.languageModelTools`` holds the array. Each
    entry needs a ``name``; the description is taken from
    ``modelDescription``, ``userDescription`` or ``description``.

    Args:
        path: Path to the JSON file.

    Returns:
        Mapping of tool name to metadata. Entries without a name are skipped.

    Raises:
        ToolMetadataError: If the file is missing, is not valid JSON, lacks
            a tool array, or holds an entry that fails validation.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ToolMetadataError(f"Tool metadata file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ToolMetadataError(f"Invalid JSON in {path}: {exc}") from exc

    if isinstance(raw, dict):
        contributes = raw.get("contributes")
        entries = (
            contributes.get("languageModelTools")
            if isinstance(contributes, dict)
            else None
        )
    else:
        entries = raw
    if not isinstance(entries, list):
        raise ToolMetadataError(f"languageModelTools section missing in {path}")

    metadata: dict[str, ToolMetadata] = {}
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name"):
            continue
        try:
            item = _entry_to_metadata(entry)
        except ValidationError as exc:
            raise ToolMetadataError(
                f"Invalid metadata for tool {entry['name']!r}: {exc}"
            ) from exc
        metadata[item.name] = item

    logger.debug("Loaded metadata for %d tools from %s", len(metadata), path)
    return metadata
