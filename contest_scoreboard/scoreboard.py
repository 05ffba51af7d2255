"""
Main ScoreboardSystem class that orchestrates all components.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web, web_runner
import aiohttp_cors

from .config import ContestConfig
from .database import DatabaseManager
from .service import ContestService
from .web_handlers import WebHandlers, error_middleware

logger = logging.getLogger(__name__)

# Room for multipart/encoding overhead on top of the submission limit
REQUEST_SIZE_SLACK = 64 * 1024


class ScoreboardSystem:
    """Async contest scoreboard with an HTTP API and a WebSocket feed."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        web_port: int = 8081,
        db_path: str = "scoreboard.db",
        config_path: str = "contest_config.json",
        config: Optional[ContestConfig] = None,
    ) -> None:
        self.host = host
        self.web_port = web_port
        self.db_path = db_path

        # Load configuration
        self.config = config or ContestConfig(config_path)
        # Initialize components
        self.db = DatabaseManager(db_path)
        self.service = ContestService(self.config, self.db)
        self.web_handlers = WebHandlers(self.service, self.config)

    async def init_db(self) -> None:
        """
        Initialize the database and restore contest state from it.
        """
        await self.db.init_db()
        await self.service.load()

    def create_app(self) -> web.Application:
        """
        Build the aiohttp application with all routes and CORS.

        @return: Configured web.Application
        """
        max_bytes = self.config.get("submission", "max_submission_bytes")
        app = web.Application(
            middlewares=[error_middleware],
            client_max_size=max_bytes + REQUEST_SIZE_SLACK,
        )

        cors = aiohttp_cors.setup(
            app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )

        handlers = self.web_handlers

        # Scoreboard
        app.router.add_get("/api/scoreboard", handlers.web_api_scoreboard)
        app.router.add_get("/api/scoreboard.txt", handlers.web_text_scoreboard)
        app.router.add_get("/api/stats", handlers.web_api_stats)
        app.router.add_get("/ws", handlers.web_websocket)

        # Contest status
        app.router.add_get("/api/contest/status", handlers.web_api_status)
        app.router.add_put("/api/contest/status", handlers.web_api_set_status)
        app.router.add_post("/api/contest/reset", handlers.web_api_reset)

        # Tasks and answer keys
        app.router.add_get("/api/tasks", handlers.web_api_tasks)
        app.router.add_post("/api/tasks", handlers.web_api_add_task)
        app.router.add_patch("/api/tasks/{task_id}", handlers.web_api_update_task)
        app.router.add_delete("/api/tasks/{task_id}", handlers.web_api_delete_task)
        app.router.add_get("/api/tasks/{task_id}/key", handlers.web_api_download_key)
        app.router.add_put("/api/tasks/{task_id}/key", handlers.web_api_upload_key)
        app.router.add_put("/api/keys", handlers.web_api_upload_master_key)

        # Teams and submissions
        app.router.add_post("/api/teams", handlers.web_api_add_team)
        app.router.add_patch("/api/teams/{team_id}", handlers.web_api_update_team)
        app.router.add_delete("/api/teams/{team_id}", handlers.web_api_delete_team)
        app.router.add_post(
            "/api/teams/{team_id}/tasks/{task_id}/submissions",
            handlers.web_api_submit,
        )

        # Add CORS to all routes
        for route in list(app.router.routes()):
            cors.add(route)

        return app

    async def start_web_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind the server to (default uses configured host)
        @param port: Port number to use (default uses configured web_port)
        @return: AppRunner instance for the web server
        """
        if host is None:
            host = self.host
        if port is None:
            port = self.web_port

        app_runner = web_runner.AppRunner(self.create_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info("Web server running on http://%s:%s", host, port)
        return app_runner

    async def run(self) -> None:
        """
        Run the web server until cancelled.
        """
        runner = await self.start_web_server()

        print("\nScoreboard System Running!")
        print(f"HTTP API:       http://{self.host}:{self.web_port}/api/scoreboard")
        print(f"Live feed:      ws://{self.host}:{self.web_port}/ws")
        print("\nPress Ctrl+C to stop...\n")

        try:
            await asyncio.Event().wait()
        finally:
            logger.info("Shutting down web server")
            await runner.cleanup()

    def print_full_scoreboard(self) -> None:
        """
        Print the complete scoreboard to console.
        """
        print(
            self.web_handlers.renderer.render(
                self.service.scoreboard(),
                self.service.list_tasks(),
                self.service.status,
            )
        )
