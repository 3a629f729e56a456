import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_MCP_URL = "https://server.smithery.ai/@aryankeluskar/polymarket-mcp/mcp"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} must be an integer") from exc


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration read from environment variables.

    - OPENAI_API_KEY is checked by the app lifespan, not here, so the client
      tooling can load settings without server credentials.
    - MARKET_MCP_API_KEY / MARKET_MCP_PROFILE are optional query parameters
      for the market tool server.
    """

    assistant_model: str = "gpt-4.1"
    assistant_max_output_tokens: int = 4096
    assistant_max_tool_rounds: int = 2
    market_mcp_url: str = DEFAULT_MCP_URL
    market_mcp_api_key: Optional[str] = None
    market_mcp_profile: Optional[str] = None
    log_level: str = "INFO"
    chat_ws_url: str = "ws://localhost:8000/ws"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            assistant_model=_env_str("ASSISTANT_MODEL") or cls.assistant_model,
            assistant_max_output_tokens=_env_int("ASSISTANT_MAX_OUTPUT_TOKENS", cls.assistant_max_output_tokens),
            assistant_max_tool_rounds=_env_int("ASSISTANT_MAX_TOOL_ROUNDS", cls.assistant_max_tool_rounds),
            market_mcp_url=_env_str("MARKET_MCP_URL") or DEFAULT_MCP_URL,
            market_mcp_api_key=_env_str("MARKET_MCP_API_KEY"),
            market_mcp_profile=_env_str("MARKET_MCP_PROFILE"),
            log_level=(_env_str("LOG_LEVEL") or cls.log_level).upper(),
            chat_ws_url=_env_str("CHAT_WS_URL") or cls.chat_ws_url,
        )
