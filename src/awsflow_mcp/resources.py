"""Reference documents served through ``resources/list`` and ``resources/read``."""

from dataclasses import dataclass
from typing import TypedDict

from awsflow_mcp.exceptions import ResourceNotFoundError
from awsflow_mcp.guard import MUTATING_VERBS

MARKDOWN = "text/markdown"


class ResourceListing(TypedDict):
    uri: str
    name: str
    description: str
    mimeType: str


class ResourceContents(TypedDict):
    uri: str
    mimeType: str
    text: str


@dataclass(frozen=True)
class ResourceDocument:
    uri: str
    name: str
    description: str
    text: str
    mime_type: str = MARKDOWN

    def listing(self) -> ResourceListing:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }

    def contents(self) -> ResourceContents:
        return {"uri": self.uri, "mimeType": self.mime_type, "text": self.text}


_GETTING_STARTED = """\
# Awsflow MCP bridge

Send one JSON-RPC request per line. Start with `initialize`, then call
`tools/list` to see the tools enabled for this session.

Requests without an `id` are notifications and never receive a response.
When the bridge is at capacity a new connection receives a single
`notifications/status` message with `status: "queued"` and waits until a
session slot frees.
"""

_TOOL_CALLS = """\
# Calling tools

```json
{"jsonrpc": "2.0", "id": 7, "method": "tools/call",
 "params": {"name": "S3Tool",
            "arguments": {"command": "ListBuckets", "params": {}}}}
```

The tool may be named with `tool` or `name`, its arguments given with
`params` or `arguments`. `command` may sit next to the tool name or inside
the arguments.

Error codes: -32602 missing tool or command, -32001 tool not enabled,
-32000 host session not initialized, -32003 cancelled by user,
-32603 tool failure (details in `error.data`).
"""

_CONFIRMATION_HEADER = """\
# Confirmation of mutating commands

Commands whose name starts with one of the verbs below require interactive
approval on the host before they run. A declined command fails with error
code -32003 and nothing is executed.

"""


def _confirmation_text() -> str:
    verbs = "\n".join(f"- {verb}" for verb in MUTATING_VERBS)
    return _CONFIRMATION_HEADER + verbs + "\n"


DEFAULT_RESOURCES: tuple[ResourceDocument, ...] = (
    ResourceDocument(
        uri="awsflow://docs/getting-started",
        name="Getting started",
        description="How to talk to the Awsflow MCP bridge",
        text=_GETTING_STARTED,
    ),
    ResourceDocument(
        uri="awsflow://docs/tool-calls",
        name="Tool calls",
        description="Request shape and error codes for tools/call",
        text=_TOOL_CALLS,
    ),
    ResourceDocument(
        uri="awsflow://docs/confirmation",
        name="Confirmation gate",
        description="Command verbs that require user approval",
        text=_confirmation_text(),
    ),
)


def find_resource(
    resources: tuple[ResourceDocument, ...], uri: str
) -> ResourceDocument:
    """Return the document with *uri*.

    Raises:
        ResourceNotFoundError: If no document has that URI.
    """
    for document in resources:
        if document.uri == uri:
            return document
    raise ResourceNotFoundError(uri)
