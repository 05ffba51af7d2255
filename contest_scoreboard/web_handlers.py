"""
Web route handlers for the contest scoreboard.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import WSMsgType, web

from .errors import NotFoundError, PermissionDenied, ScoreboardError, ValidationError
from .models import ContestStatus, KeyVisibility
from .publisher import Payload
from .rendering import ScoreboardRenderer
from .service import ContestService

logger = logging.getLogger(__name__)

ADMIN_HEADER = "X-Admin-Token"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_response(
    error: ScoreboardError,
    status: int,
) -> web.Response:
    return web.json_response(
        {"error": type(error).__name__, "message": str(error)},
        status=status,
    )


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Handler,
) -> web.StreamResponse:
    """
    Translate scoreboard errors into JSON responses.

    @param request: Incoming request
    @param handler: Next handler in the chain
    @return: Handler response, or a 400/403/404 JSON error
    """
    try:
        return await handler(request)
    except ValidationError as e:
        return error_response(e, 400)
    except PermissionDenied as e:
        return error_response(e, 403)
    except NotFoundError as e:
        return error_response(e, 404)
    except ScoreboardError as e:
        logger.exception("Unexpected scoreboard error on %s", request.path)
        return error_response(e, 500)


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        service: ContestService,
        config: Any,
    ) -> None:
        self.service = service
        self.config = config
        self.renderer = ScoreboardRenderer(config.get("contest_name"))

    def _require_admin(self, request: web.Request) -> None:
        self.service.check_admin(request.headers.get(ADMIN_HEADER))

    def _is_admin(self, request: web.Request) -> bool:
        try:
            self._require_admin(request)
        except PermissionDenied:
            return False
        return True

    def _limit(self, request: web.Request) -> int:
        max_entries = self.config.get("ui", "max_leaderboard_entries")
        try:
            limit = int(request.query.get("limit", max_entries))
        except ValueError:
            raise ValidationError("limit must be an integer") from None
        return max(0, min(limit, max_entries))

    async def _read_json(self, request: web.Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Request body must be valid JSON") from None
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    async def _read_text(self, request: web.Request) -> str:
        try:
            return await request.text()
        except UnicodeDecodeError:
            raise ValidationError("Invalid character encoding") from None

    def _team_id(self, request: web.Request) -> int:
        try:
            return int(request.match_info["team_id"])
        except ValueError:
            raise ValidationError("Team id must be an integer") from None

    # Scoreboard

    async def web_api_scoreboard(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for the ranked scoreboard.

        @param request: HTTP request with optional `limit` query parameter
        @return: JSON response containing ranked teams
        """
        teams = self.service.scoreboard(self._limit(request))
        return web.json_response(
            {
                "contest": self.config.get("contest_name"),
                "status": self.service.status.value,
                "teams": [team.to_dict() for team in teams],
            }
        )

    async def web_text_scoreboard(
        self,
        request: web.Request,
    ) -> web.Response:
        text = self.renderer.render(
            self.service.scoreboard(),
            self.service.list_tasks(),
            self.service.status,
            limit=self._limit(request),
        )
        return web.Response(text=text, content_type="text/plain")

    async def web_api_stats(
        self,
        _: web.Request,
    ) -> web.Response:
        return web.json_response(self.service.stats())

    async def web_websocket(
        self,
        request: web.Request,
    ) -> web.WebSocketResponse:
        """
        Live scoreboard feed.

        Sends the full scoreboard on connect and after every change. A client
        may send "refresh" to have the current state re-sent.

        @param request: HTTP upgrade request
        @return: WebSocket response
        """
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        async def push(payload: Payload) -> None:
            await ws.send_json(
                {
                    "type": "scoreboard:update",
                    "status": self.service.status.value,
                    "teams": payload,
                }
            )

        subscription = await self.service.publisher.subscribe(push)
        logger.info("WebSocket client connected: %s", request.remote)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT and msg.data.strip() == "refresh":
                    if not await self.service.publisher.resend(subscription):
                        break
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket closed with exception %s", ws.exception())
        finally:
            subscription.unsubscribe()
            logger.info("WebSocket client disconnected: %s", request.remote)

        return ws

    # Contest status

    async def web_api_status(
        self,
        _: web.Request,
    ) -> web.Response:
        return web.json_response({"status": self.service.status.value})

    async def web_api_set_status(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        data = await self._read_json(request)
        try:
            status = ContestStatus.parse(str(data.get("status", "")))
        except ValueError as e:
            raise ValidationError(str(e)) from None
        await self.service.set_status(status)
        return web.json_response({"status": self.service.status.value})

    async def web_api_reset(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        await self.service.reset()
        return web.json_response({"status": self.service.status.value})

    # Tasks and keys

    async def web_api_tasks(
        self,
        _: web.Request,
    ) -> web.Response:
        return web.json_response(
            {"tasks": [task.to_dict() for task in self.service.list_tasks()]}
        )

    def _visibility(self, data: Dict[str, Any]) -> Optional[KeyVisibility]:
        value = data.get("key_visibility")
        if value is None:
            return None
        try:
            return KeyVisibility(value)
        except ValueError:
            raise ValidationError(f"Unknown key visibility: {value}") from None

    async def web_api_add_task(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        data = await self._read_json(request)
        task = await self.service.add_task(
            data.get("name"),
            self._visibility(data) or KeyVisibility.PRIVATE,
        )
        return web.json_response(task.to_dict(), status=201)

    async def web_api_update_task(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        data = await self._read_json(request)
        task = await self.service.update_task(
            request.match_info["task_id"],
            name=data.get("name"),
            key_visibility=self._visibility(data),
        )
        return web.json_response(task.to_dict())

    async def web_api_delete_task(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        await self.service.delete_task(request.match_info["task_id"])
        return web.Response(status=204)

    async def web_api_upload_key(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        Upload or replace a task's answer key (raw CSV body).

        @param request: HTTP request with the task id and key file content
        @return: JSON response with the number of key rows
        """
        self._require_admin(request)
        task_id = request.match_info["task_id"]
        key = await self.service.set_key(task_id, await self._read_text(request))
        return web.json_response({"task_id": task_id, "rows": len(key)})

    async def web_api_upload_master_key(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        task_ids = await self.service.set_master_key(await self._read_text(request))
        return web.json_response({"tasks": task_ids})

    async def web_api_download_key(
        self,
        request: web.Request,
    ) -> web.Response:
        key = self.service.get_key(
            request.match_info["task_id"], is_admin=self._is_admin(request)
        )
        return web.Response(text=key.raw_text or key.to_csv(), content_type="text/csv")

    # Teams and submissions

    async def web_api_add_team(
        self,
        request: web.Request,
    ) -> web.Response:
        """Register a team. Open to everyone, like contestant sign-up."""
        data = await self._read_json(request)
        team = await self.service.add_team(data.get("name"))
        return web.json_response(team.to_dict(), status=201)

    async def web_api_update_team(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        data = await self._read_json(request)
        team = await self.service.update_team(self._team_id(request), data.get("name"))
        return web.json_response(team.to_dict())

    async def web_api_delete_team(
        self,
        request: web.Request,
    ) -> web.Response:
        self._require_admin(request)
        await self.service.delete_team(self._team_id(request))
        return web.Response(status=204)

    async def web_api_submit(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for submissions (raw CSV body).

        @param request: HTTP request with team id, task id and prediction file
        @return: JSON response with the attempt's score
        """
        result = await self.service.submit(
            self._team_id(request),
            request.match_info["task_id"],
            await self._read_text(request),
        )
        return web.json_response(result.to_dict())
