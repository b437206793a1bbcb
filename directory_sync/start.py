"""Service launcher: starts Uvicorn."""
import os


def main() -> None:
    # Start the ASGI server
    import uvicorn

    uvicorn.run(
        "directory_sync.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
