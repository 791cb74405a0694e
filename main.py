from __future__ import annotations

import os
import uvicorn


def main() -> None:
    app_port = int(os.getenv("APP_PORT", "10000"))
    reload = os.getenv("RELOAD", "0") == "1"

    uvicorn.run(
        "inv_app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=app_port,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
