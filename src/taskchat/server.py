"""Server entry point for the TaskChat API."""

import os

import uvicorn


def main():
    """Run the FastAPI server."""
    uvicorn.run(
        "taskchat.api:app",
        host=os.getenv("TASKCHAT_HOST", "0.0.0.0"),
        port=int(os.getenv("TASKCHAT_PORT", "8080")),
        reload=os.getenv("TASKCHAT_RELOAD", "false").lower() in ("true", "1", "yes"),
        log_level="info",
    )


if __name__ == "__main__":
    main()
