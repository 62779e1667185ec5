"""Static defaults for the desk backend."""

MCP_PROTOCOL_VERSION = "2024-11-05"
MCP_CLIENT_NAME = "desk-backend"
MCP_CLIENT_VERSION = "0.1.0"

MCP_SERVER_CATEGORIES = (
    "filesystem",
    "database",
    "search",
    "git",
    "web3",
    "custom",
    "conversational",
    "development",
)

DEFAULT_FILESYSTEM_SERVER_NAME = "filesystem"

MCP_SERVER_TEMPLATES = [
    {
        "name": "@tamago-labs/smart-contract-dev",
        "command": "npx",
        "args": ["-y", "@tamago-labs/smart-contract-dev"],
        "env": {},
        "description": "Comprehensive smart contract development tools with deployment and verification capabilities",
        "category": "web3",
    },
    {
        "name": "web-search",
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-web-search"],
        "env": {},
        "description": "Web search and scraping capabilities",
        "category": "search",
    },
]


def filesystem_server_args(root: str) -> list[str]:
    return ["-y", "@modelcontextprotocol/server-filesystem", root]
