from __future__ import annotations

import asyncio
import logging
import signal

import uvicorn

from wp_git_push.api import create_app
from wp_git_push.config import APP_VERSION, load_options
from wp_git_push.service import PluginPushService


async def main() -> None:
    options = load_options()
    log_level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    logging.basicConfig(
        level=log_level_map.get(options.log_level.lower(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    service = PluginPushService(options)
    logging.getLogger(__name__).info(
        "WP Git Push starting | version=%s | plugins=%s | backups=%s | token=%s",
        APP_VERSION,
        options.plugins_dir,
        options.backup_dir,
        "yes" if service.token_configured() else "no",
    )
    if options.http_api_port <= 0:
        logging.getLogger(__name__).warning("HTTP API disabled (http_api_port=0); nothing to serve")
        await service.shutdown()
        return

    app = create_app(service)
    config = uvicorn.Config(app, host="0.0.0.0", port=options.http_api_port, log_level=options.log_level)
    server = uvicorn.Server(config)

    loop = asyncio.get_running_loop()

    def _shutdown_signal() -> None:
        server.should_exit = True

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown_signal)

    try:
        await server.serve()
    finally:
        await service.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
