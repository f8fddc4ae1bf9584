import argparse
import os

import uvicorn

import notekeeper.main

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Notekeeper Server")
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8000")),
        help="Port to bind to (default: 8000)",
    )
    args = parser.parse_args()

    # One worker: the in-memory store lives inside this process.
    print(f"Starting server on {args.host}:{args.port}")
    uvicorn.run(notekeeper.main.app, host=args.host, port=args.port, reload=False, workers=1)
