from __future__ import annotations

import uvicorn

from relay.config import settings


if __name__ == "__main__":
    # Timers and battle state live in one process; a single worker is required.
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.ws_port,
        log_level=settings.log_level.lower(),
        workers=1,
    )
