"""vidscript MCP Server — expose transcript extraction as tools for MCP-capable agents.

Run:
    python -m vidscript.mcp_server

Or add to your MCP config (e.g., Claude Desktop, Cursor):
    {
      "mcpServers": {
        "vidscript": {
          "command": "python",
          "args": ["-m", "vidscript.mcp_server"],
          "env": {
            "VIDSCRIPT_STT_API_KEY": "sk-your-key",
            "VIDSCRIPT_MCP_USER": "my-agent"
          }
        }
      }
    }

Runs are authenticated as ``VIDSCRIPT_MCP_USER`` on the free tier unless
``VIDSCRIPT_MCP_TIER`` says otherwise.
"""

from mcp.server.fastmcp import FastMCP

from . import config

mcp = FastMCP("vidscript")


@mcp.tool()
def extract_transcript(url: str, format: str = "txt", language: str = "auto") -> str:
    """Extract the spoken transcript of a video.

    Supports YouTube, Bilibili and Xiaohongshu (RedBook) links. Downloads
    the audio, runs speech-to-text and returns the transcript rendered as:
      txt   plain paragraphs (default)
      srt   numbered subtitle cues
      vtt   WebVTT cues
      json  {"text", "segments": [{start, end, text}]}

    If transcription fails, a clearly labelled placeholder transcript is
    returned instead of an error; the first line says why.

    Args:
        url: Video URL
        format: Output format (txt, srt, vtt, json)
        language: Spoken language code, or "auto" to detect
    """
    from .exporter import format_transcript
    from .orchestrator import get_orchestrator

    result = get_orchestrator().extract_authenticated(
        url,
        config.get("VIDSCRIPT_MCP_USER", "mcp"),
        language=language,
        tier=config.get("VIDSCRIPT_MCP_TIER", "free"),
    )
    if result.kind == "error":
        return f"error [{result.error_kind.value}]: {result.message}"

    header = f"extraction {result.extraction.id}"
    if result.degraded_by is not None:
        header += f" (fallback: {result.degraded_by.value})"
    return f"{header}\n\n{format_transcript(result.transcript, format)}"


@mcp.tool()
def get_transcript(extraction_id: str, format: str = "txt") -> str:
    """Fetch a previously extracted transcript by its extraction id.

    Args:
        extraction_id: The id returned by extract_transcript
        format: Output format (txt, srt, vtt, json)
    """
    from .exporter import format_transcript
    from .store import ExtractionStore

    record = ExtractionStore().get_extraction(extraction_id)
    owner = config.get("VIDSCRIPT_MCP_USER", "mcp")
    if record is None or record.transcript is None or record.requester not in (None, owner):
        return "no transcript for this id"
    return format_transcript(record.transcript, format)


@mcp.tool()
def check_services() -> str:
    """Report whether the downloader and the transcription engine are reachable.

    Call this first if extractions keep coming back as fallbacks.
    """
    from .orchestrator import get_orchestrator

    services = get_orchestrator().check_services()
    return "\n".join(f"{name}: {'ok' if ok else 'unavailable'}" for name, ok in services.items())


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
