"""uvicorn entry point; prints the bound port for the launching shell."""

import os
import socket

import uvicorn


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def resolve_port() -> int:
    return int(os.getenv("PORT", "0")) or find_free_port()


def bind_host(require_auth: bool) -> str:
    """LYZ_HOST wins; otherwise web mode listens everywhere, desktop on loopback."""
    explicit = os.getenv("LYZ_HOST")
    if explicit:
        return explicit
    return "0.0.0.0" if require_auth else "127.0.0.1"


def start_server(app, port: int, require_auth: bool = False):
    print(f"PORT:{port}", flush=True)
    uvicorn.run(
        app,
        host=bind_host(require_auth),
        port=port,
        log_level=os.getenv("LOG_LEVEL", "warning").lower(),
    )
