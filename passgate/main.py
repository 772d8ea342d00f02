"""Passgate entrypoint."""

import uvicorn


def cli() -> None:
    """CLI entrypoint."""
    uvicorn.run("passgate.web.app:create_app", factory=True, host="127.0.0.1", port=8000)


if __name__ == "__main__":
    cli()
