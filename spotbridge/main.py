import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from spotbridge import spotify, spotify_auth
from spotbridge.config import Settings, configure_logging
from spotbridge.errors import ErrorHandler, SpotBridgeError, UpstreamError, is_token_error
from spotbridge.helpers import extract_bearer_token, playlist_from_recommendation
from spotbridge.oauth_relay import OAuthRelay
from spotbridge.secret_table import SecretTable
from spotbridge.token_manager import InternalTokenBroker
from spotbridge.web_player import SpotifyWebPlayer

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


@dataclass
class ServerState:
    settings: Settings
    web_player: SpotifyWebPlayer
    secrets: SecretTable
    broker: InternalTokenBroker
    relay: OAuthRelay
    background_tasks: List[asyncio.Task] = field(default_factory=list)

    @classmethod
    def build(cls, settings: Settings) -> "ServerState":
        web_player = SpotifyWebPlayer(sp_dc=settings.sp_dc, timeout=settings.http_timeout)
        secrets = SecretTable(default_version=settings.totp_version)
        return cls(
            settings=settings,
            web_player=web_player,
            secrets=secrets,
            broker=InternalTokenBroker(web_player, secrets),
            relay=OAuthRelay(),
        )


class IdsBody(BaseModel):
    ids: List[str]


def get_state(request: Request) -> ServerState:
    return request.app.state.spotbridge


def require_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    return extract_bearer_token(authorization)


def _missing_token() -> JSONResponse:
    return JSONResponse("Access token is missing", status_code=401)


async def _startup(state: ServerState) -> None:
    await state.secrets.refresh_from_remote(
        lambda: state.web_player.fetch_secret_dict(state.settings.secrets_url)
    )
    if state.settings.warm_token and state.settings.sp_dc:
        try:
            await state.broker.get_token()
        except SpotBridgeError as e:
            logger.error(f"Unable to warm up web player token: {e.message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    state: ServerState = app.state.spotbridge
    state.background_tasks.append(asyncio.create_task(_startup(state)))
    try:
        yield
    finally:
        for task in state.background_tasks:
            task.cancel()
        await asyncio.gather(*state.background_tasks, return_exceptions=True)
        state.background_tasks.clear()
        await state.web_player.close()


def create_app(settings: Optional[Settings] = None, state: Optional[ServerState] = None) -> FastAPI:
    if state is None:
        state = ServerState.build(settings or Settings.from_env())
    settings = state.settings

    app = FastAPI(title="spotbridge", lifespan=lifespan)
    app.state.spotbridge = state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
    )

    @app.exception_handler(SpotBridgeError)
    async def spotbridge_error_handler(request: Request, exc: SpotBridgeError):
        status_code, payload = ErrorHandler.to_response(exc)
        if is_token_error(exc):
            payload["error"] = f"Failed to get backend token: {exc.message}"
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        if isinstance(exc, UpstreamError) and exc.body:
            # details only carries the first 500 characters
            logger.error(f"Upstream response body: {exc.body}")
        return JSONResponse(payload, status_code=status_code)

    @app.exception_handler(Exception)
    async def unknown_error_handler(request: Request, exc: Exception):
        status_code, payload = ErrorHandler.to_response(exc)
        return JSONResponse(payload, status_code=status_code)

    # === OAUTH ===

    @app.get("/login")
    def login(state: str = "", server: ServerState = Depends(get_state)):
        server.relay.begin(state)
        return RedirectResponse(spotify_auth.build_authorize_url(server.settings, state))

    @app.get("/callback", response_class=HTMLResponse)
    def callback(
        request: Request,
        code: str = "",
        state: str = "",
        error: Optional[str] = None,
        server: ServerState = Depends(get_state),
    ):
        if error:
            logger.error(f"Callback Error: {error}")
            return templates.TemplateResponse(
                request, "result.html", {"success": False, "message": f"Callback Error: {error}"}
            )

        try:
            token_data = spotify_auth.exchange_code(server.settings, code)
        except UpstreamError as e:
            logger.error(f"Error getting tokens: {e.message} {e.details or ''}")
            return templates.TemplateResponse(
                request, "result.html", {"success": False, "message": f"Error getting tokens: {e.details or e.message}"}
            )

        server.relay.complete(
            state,
            access_token=token_data.get("access_token", ""),
            refresh_token=token_data.get("refresh_token", ""),
            expires_in=token_data.get("expires_in") or 0,
        )
        return templates.TemplateResponse(
            request,
            "result.html",
            {"success": True, "message": "You can close this window and return to the app."},
        )

    @app.get("/auth-check")
    async def auth_check(state: str = "", server: ServerState = Depends(get_state)):
        auth = server.relay.poll(state)
        if auth is None:
            return {"pending": True}
        return auth.to_dict()

    @app.get("/refresh_token")
    def refresh(refresh_token: Optional[str] = None, server: ServerState = Depends(get_state)):
        if not refresh_token:
            return JSONResponse({"error": "Missing refresh_token parameter"}, status_code=400)
        try:
            return spotify_auth.refresh_access_token(server.settings, refresh_token)
        except UpstreamError as e:
            logger.error(f"Error refreshing access token: {e.message}")
            return JSONResponse({"error": "Failed to refresh access token"}, status_code=500)

    # === WEB PLAYER ===

    @app.post("/recommendation")
    async def recommendation(request: Request, server: ServerState = Depends(get_state)):
        try:
            body = await request.json()
        except ValueError:
            body = None
        track_id = body.get("trackId") if isinstance(body, dict) else None
        if not track_id or not isinstance(track_id, str):
            return JSONResponse({"error": "Missing trackId"}, status_code=400)

        payload = await server.broker.get_recommend_song(track_id)
        playlist_uri, playlist_id = playlist_from_recommendation(payload)
        if not playlist_uri or not playlist_id:
            return JSONResponse({"error": "Recommendation response missing playlist data"}, status_code=502)
        return {"playlistUri": playlist_uri, "playlistId": playlist_id, "raw": payload}

    @app.get("/lyrics/{track_id}")
    async def lyrics(track_id: str, server: ServerState = Depends(get_state)):
        return await server.broker.get_lyrics(track_id)

    # === PUBLIC API PROXY ===

    @app.get("/me/playlists")
    def my_playlists(token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        return spotify.get_my_playlists(spotify.create_client(token, settings.http_timeout))

    @app.get("/playlists/{playlist_id}/tracks")
    def playlist_tracks(playlist_id: str, token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        return spotify.get_playlist_tracks(spotify.create_client(token, settings.http_timeout), playlist_id)

    @app.get("/search")
    def search(q: str = "", token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        if not q:
            return JSONResponse("Missing query parameter q", status_code=400)
        return spotify.search_tracks(spotify.create_client(token, settings.http_timeout), q)

    @app.get("/me/tracks/contains")
    def check_saved(ids: str = "", token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        id_list = [i for i in ids.split(",") if i]
        if not id_list:
            return JSONResponse("Missing ids", status_code=400)
        return spotify.check_saved(spotify.create_client(token, settings.http_timeout), id_list)

    @app.put("/me/tracks")
    def save_tracks(body: IdsBody, token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        spotify.save_tracks(spotify.create_client(token, settings.http_timeout), body.ids)
        return "OK"

    @app.delete("/me/tracks")
    def remove_tracks(body: IdsBody, token: Optional[str] = Depends(require_token)):
        if not token:
            return _missing_token()
        spotify.remove_tracks(spotify.create_client(token, settings.http_timeout), body.ids)
        return "OK"

    @app.get("/health")
    async def health_check(server: ServerState = Depends(get_state)):
        cached = await server.broker.cached_token()
        return {
            "status": "healthy",
            "spDcConfigured": bool(server.settings.sp_dc),
            "secretVersions": sorted(server.secrets.all_versions()),
            "defaultVersion": server.secrets.default_version,
            "tokenCached": cached is not None,
            "tokenExpiresAt": cached.expires_at if cached else None,
            "pendingAuth": server.relay.pending_count(),
        }

    if settings.static_dir:
        static_path = Path(settings.static_dir)
        if static_path.is_dir():
            app.mount("/", StaticFiles(directory=str(static_path), html=True), name="static")
        else:
            logger.warning(f"Static directory {static_path} not found; UI will not be served")

    return app


def run() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)

    logger.info(f"Starting spotbridge on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
