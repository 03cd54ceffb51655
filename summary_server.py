"""
Summary Always MCP Server

Records short conversation summaries on request, shows them back filtered by
keyword or limited to the most recent entries, and appends them to a per-day
markdown file ("<YYYYMMDD>.md") in the storage directory.

Tools:
- add_summary, show_summaries, save_summaries
- get_summary_stats, clear_summaries

Every tool call goes through call_tool(), which validates the arguments and
turns failures into {"error": ..., "status": "failed"} payloads.
"""

from fastmcp import FastMCP
from fastmcp.exceptions import NotFoundError, ToolError
from fastmcp.server.middleware import Middleware, MiddlewareContext
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type
from pydantic import BaseModel, ConfigDict, Field, ValidationError
import json
import logging
import os
import sys

from summary_store import (
    STORAGE_PATH_ENV,
    SUMMARY_CONFIG,
    InvalidArgument,
    SummaryStore,
    SummaryStoreError,
    UnknownOperation,
    resolve_storage_dir,
)

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("summary-always")

# One store per process; state is not kept across restarts
store = SummaryStore(logger=logger)


# ============================================================================
# Input Models for Tools
# ============================================================================

class AddSummaryInput(BaseModel):
    """Input for recording a new summary."""
    model_config = ConfigDict(extra='forbid')

    content: str = Field(..., description="The summary content to record", min_length=1)
    keywords: List[str] = Field(default_factory=list, description="Optional topic keywords, '#' prefix allowed")


class ShowSummariesInput(BaseModel):
    """Input for listing recorded summaries."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    filter_keywords: Optional[List[str]] = Field(
        None,
        alias="filterKeywords",
        description="Only show summaries with a keyword containing one of these terms"
    )
    limit: Optional[int] = Field(None, description="Show only the latest N summaries", ge=1)


class SaveSummariesInput(BaseModel):
    """Input for saving summaries to the day file."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    custom_path: Optional[str] = Field(
        None,
        alias="customPath",
        description=f"Directory to save into instead of ${STORAGE_PATH_ENV}"
    )


class EmptyInput(BaseModel):
    model_config = ConfigDict(extra='forbid')


# ============================================================================
# Handlers
# ============================================================================

async def handle_add_summary(params: AddSummaryInput) -> Dict[str, Any]:
    result = store.add(params.content, params.keywords)
    return {
        "status": "success",
        "action": "add_summary",
        "message": "Summary added",
        "id": result.id,
        "formattedSummary": result.formatted_summary,
        "stats": store.stats().model_dump(by_alias=True, exclude_none=True),
    }


async def handle_show_summaries(params: ShowSummariesInput) -> Dict[str, Any]:
    summaries = store.list_summaries(params.filter_keywords, params.limit)
    return {
        "status": "success",
        "action": "show_summaries",
        "message": f"Found {len(summaries)} summaries",
        "total": len(summaries),
        "summaries": summaries,
    }


async def handle_save_summaries(params: SaveSummariesInput) -> Dict[str, Any]:
    result = await store.save_to_file(params.custom_path)
    return {
        "status": "success",
        "action": "save_summaries",
        "message": "Summaries saved to file",
        **result.model_dump(by_alias=True),
    }


async def handle_get_summary_stats(params: EmptyInput) -> Dict[str, Any]:
    return {
        "status": "success",
        "action": "get_summary_stats",
        **store.stats().model_dump(by_alias=True, exclude_none=True),
    }


async def handle_clear_summaries(params: EmptyInput) -> Dict[str, Any]:
    cleared = store.clear()
    return {
        "status": "success",
        "action": "clear_summaries",
        "message": f"Cleared {cleared} summaries",
        "cleared": cleared,
    }


Handler = Callable[[Any], Awaitable[Dict[str, Any]]]

TOOL_HANDLERS: Dict[str, Tuple[Type[BaseModel], Handler]] = {
    "add_summary": (AddSummaryInput, handle_add_summary),
    "show_summaries": (ShowSummariesInput, handle_show_summaries),
    "save_summaries": (SaveSummariesInput, handle_save_summaries),
    "get_summary_stats": (EmptyInput, handle_get_summary_stats),
    "clear_summaries": (EmptyInput, handle_clear_summaries),
}


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{location}: {err['msg']}")
    return "Invalid arguments: " + "; ".join(problems)


def _failure(name: str, error: SummaryStoreError) -> Dict[str, Any]:
    logger.error("Tool %s failed: %s", name, error)
    return {"error": str(error), "status": "failed"}


async def call_tool(name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Validate arguments, run the named tool and wrap any failure.

    Args:
        name: Tool name, e.g. 'add_summary'.
        arguments: Raw tool arguments as received from the client.

    Returns:
        The tool's success payload, or {"error": message, "status": "failed"}.
    """
    try:
        if name not in TOOL_HANDLERS:
            raise UnknownOperation(f"Unknown tool: {name}")
        input_model, handler = TOOL_HANDLERS[name]

        try:
            params = input_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidArgument(_describe_validation_error(e)) from e

        return await handler(params)

    except SummaryStoreError as e:
        return _failure(name, e)


def _present(**arguments: Any) -> Dict[str, Any]:
    # Omitted optional arguments fall back to the input model defaults
    return {key: value for key, value in arguments.items() if value is not None}


def _reply(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return a success payload; send a failure payload as an error result."""
    if payload.get("status") == "failed":
        raise ToolError(json.dumps(payload, ensure_ascii=False))
    return payload


class FailurePayloadMiddleware(Middleware):
    """Answers calls FastMCP rejects before dispatch with the failure payload.

    Covers unknown tool names and arguments missing from the call.
    """

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        name = context.message.name
        try:
            return await call_next(context)
        except NotFoundError:
            payload = await call_tool(name, context.message.arguments)
        except ValidationError as e:
            payload = _failure(name, InvalidArgument(_describe_validation_error(e)))
        except ToolError as e:
            if not isinstance(e.__cause__, ValidationError):
                raise
            payload = _failure(name, InvalidArgument(_describe_validation_error(e.__cause__)))
        raise ToolError(json.dumps(payload, ensure_ascii=False))


mcp.add_middleware(FailurePayloadMiddleware())


# ============================================================================
# MCP Tools
# ============================================================================

# Parameters are typed Any so that call_tool's input models do the
# validation; json_schema_extra keeps the published schema typed.

@mcp.tool(
    name="add_summary",
    annotations={
        "title": "Add Summary",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def add_summary(
    content: Annotated[Any, Field(
        description="The summary content to record",
        json_schema_extra={"type": "string"}
    )],
    keywords: Annotated[Any, Field(
        description="Optional topic keywords",
        json_schema_extra={"type": "array", "items": {"type": "string"}}
    )] = None,
) -> Dict[str, Any]:
    """Add a conversation summary to the record.

    Use this when the user asks to "summarize and record" the conversation:
    important requirements, information the user confirmed as useful, project
    progress and decisions.

    Keep the content to one clear sentence focused on what the user raised.
    Choose at most 5 specific keywords (project names, key technologies,
    people) rather than generic nouns.

    Args:
        content: The summary, e.g. 'User needs an MCP server that records summaries.'
        keywords: Optional keywords tagging the topic of the summary.

    Returns:
        Dict with id, formattedSummary ("YYYYMMDD #kw content") and store stats.
    """
    return _reply(await call_tool("add_summary", _present(content=content, keywords=keywords)))


@mcp.tool(
    name="show_summaries",
    annotations={
        "title": "Show Summaries",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def show_summaries(
    # camelCase names are part of the published tool schema
    filterKeywords: Annotated[Any, Field(
        description="Only show summaries with a keyword containing one of these terms",
        json_schema_extra={"type": "array", "items": {"type": "string"}}
    )] = None,
    limit: Annotated[Any, Field(
        description="Show only the latest N summaries",
        json_schema_extra={"type": "integer", "minimum": 1}
    )] = None,
) -> Dict[str, Any]:
    """Show previously recorded summaries.

    Use this when the user wants to look over earlier summaries: reviewing
    conversation highlights, finding a topic, or checking recent records.

    Each summary is one line: YYYYMMDD #keyword1 #keyword2 summary content

    Args:
        filterKeywords: Optional keyword filter (case-insensitive substring match).
        limit: Optional count of the most recent summaries to show.

    Returns:
        Dict with total and the list of formatted summaries.
    """
    return _reply(await call_tool("show_summaries", _present(filterKeywords=filterKeywords, limit=limit)))


@mcp.tool(
    name="save_summaries",
    annotations={
        "title": "Save Summaries",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False
    }
)
async def save_summaries(
    customPath: Annotated[Any, Field(
        description=f"Directory to save into instead of ${STORAGE_PATH_ENV}",
        json_schema_extra={"type": "string"}
    )] = None,
) -> Dict[str, Any]:
    """Save all current summaries to the file for today.

    Use this when the user says "save the summaries".

    Opens YYYYMMDD.md (today's date) in the storage directory, writes a
    timestamped header and then every summary in memory as plain text lines.
    An existing file for the day is appended to, never overwritten.

    Args:
        customPath: Optional directory overriding the configured storage path.

    Returns:
        Dict with filePath, savedCount and the saved summaries.
    """
    return _reply(await call_tool("save_summaries", _present(customPath=customPath)))


@mcp.tool(
    name="get_summary_stats",
    annotations={
        "title": "Get Summary Statistics",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def get_summary_stats() -> Dict[str, Any]:
    """Get the number of summaries, the latest day-stamp and keyword counts."""
    return _reply(await call_tool("get_summary_stats"))


@mcp.tool(
    name="clear_summaries",
    annotations={
        "title": "Clear Summaries",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False
    }
)
async def clear_summaries() -> Dict[str, Any]:
    """Remove every summary held in memory and restart ids.

    Files already saved are left untouched.
    """
    return _reply(await call_tool("clear_summaries"))


# ============================================================================
# MCP Resources
# ============================================================================

@mcp.resource("summary://config")
def summary_config() -> str:
    """Provides the current summary recording configuration."""
    curated = ", ".join(SUMMARY_CONFIG["curated_keywords"]) or "(none)"
    return f"""# Summary Always Configuration

## Content

- Max Content Length: {SUMMARY_CONFIG['max_content_length']} characters
- Truncation Marker: {SUMMARY_CONFIG['ellipsis']}
- Curated Keywords: {curated}

## Storage

- Directory: {resolve_storage_dir()}
- Override Variable: {STORAGE_PATH_ENV}
- File Name: YYYYMMDD.md (local date of the save)
- Each save appends a "=== {SUMMARY_CONFIG['save_header_label']}: YYYY-MM-DD HH:MM:SS ===" header followed by every summary
"""


# ============================================================================
# Server Entry Point
# ============================================================================

def main() -> None:
    logging.basicConfig(
        level=os.getenv("SUMMARY_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    logger.info("Summary-Always MCP Server starting")
    logger.info("Tools: %s", ", ".join(TOOL_HANDLERS))
    logger.info("%s: %s", STORAGE_PATH_ENV, resolve_storage_dir())

    transport = os.getenv("SUMMARY_TRANSPORT", "stdio")
    if transport == "stdio":
        mcp.run()
    else:
        mcp.run(
            transport=transport,
            host=os.getenv("SUMMARY_HOST", "0.0.0.0"),
            port=int(os.getenv("SUMMARY_PORT", "8080"))
        )


if __name__ == "__main__":
    main()
