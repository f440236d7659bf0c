import uvicorn
from authgate.core.config import LISTEN_HOST, LISTEN_PORT, LOG_LEVEL

# This file is just a shim to run the app
if __name__ == "__main__":
    # uvicorn handles SIGINT/SIGTERM: stop accepting, drain open connections, exit.
    uvicorn.run(
        "authgate.main:app",
        host=LISTEN_HOST,
        port=LISTEN_PORT,
        log_level=LOG_LEVEL.lower(),
        proxy_headers=True,
        reload=False,
    )
