import logging

import uvicorn

from iframe_proxy.vars import HOST, LOG_LEVEL, PORT, PUBLIC_URL

logger = logging.getLogger("uvicorn.error")


def main():
    logger.setLevel(LOG_LEVEL)
    logger.info(f"[Server] Proxy listening on {HOST}:{PORT}")
    if PUBLIC_URL:
        logger.info(f"[Server] Public origin: {PUBLIC_URL}")
    uvicorn.run(
        "iframe_proxy.server:app",
        host=HOST,
        port=PORT,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
