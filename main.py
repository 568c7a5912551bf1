from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "checkin.server:app",
        host=os.getenv("CHECKIN_HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )


if __name__ == "__main__":
    main()
