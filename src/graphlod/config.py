"""Configuration management for GraphLOD"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    graph_path: Path | None = None
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    # Requests slower than this many seconds are logged as warnings
    slow_request_threshold: float = 1.0

    # Graphs with at least this many nodes are processed off the request thread
    worker_threshold: int = 1000
    use_worker: bool = True

    grid_size: float = 50.0
    viewport_margin: float = 100.0
    expanded_size_factor: float = 2.0

    # Initial sampling settings for new sessions
    node_limit: int = 1000
    edge_limit: int = 10000
    important_nodes_percent: int = 20

    model_config = {
        "env_prefix": "GRAPHLOD_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
