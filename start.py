from __future__ import annotations

import uvicorn

from skincoach.config import Settings


def main() -> None:
    settings = Settings.from_env()
    uvicorn.run("skincoach.main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
