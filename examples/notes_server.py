"""
Example MCP server with hand-written tools, a resource template and a prompt.

Run over stdio (the default) or HTTP:

    python examples/notes_server.py
    TRANSPORT=http python examples/notes_server.py
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from mcp_kit.core.config import get_settings
from mcp_kit.core.logging import get_logger, setup_logging
from mcp_kit.protocol.exceptions import ResourceNotFoundError
from mcp_kit.server import BaseMCPServer, run_http, run_stdio

logger = get_logger(__name__)

server = BaseMCPServer("notes", instructions="Keep short notes. Use add_note, then read notes://{title}.")
notes: Dict[str, dict] = {}


@server.tool()
async def add_note(title: str, text: str, tags: Optional[List[str]] = None) -> dict:
    """Store a note under a title, replacing any existing note."""
    notes[title] = {
        "text": text,
        "tags": tags or [],
        "updated": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Note saved", title=title)
    return {"saved": title, "count": len(notes)}


@server.tool()
async def list_notes(tag: Optional[str] = None) -> List[str]:
    """List note titles, optionally only those with a tag."""
    return sorted(t for t, note in notes.items() if tag is None or tag in note["tags"])


@server.resource("notes://{title}", description="A single note")
async def read_note(title: str) -> str:
    note = notes.get(title)
    if note is None:
        raise ResourceNotFoundError(f"notes://{title}")
    return note["text"]


@server.prompt()
def summarize(title: str) -> str:
    """Ask the model to summarize a note."""
    return f"Read notes://{title} and summarize it in three bullet points."


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings)
    if settings.TRANSPORT == "http":
        run_http(server, settings)
    else:
        run_stdio(server)
