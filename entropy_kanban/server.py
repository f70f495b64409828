"""Run the task board under uvicorn."""

from __future__ import annotations

import uvicorn

from entropy_kanban.config import load_config


def main() -> None:
    config = load_config()
    uvicorn.run(
        "entropy_kanban.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
