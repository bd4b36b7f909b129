import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from chat import list_messages, send_message
from config import API_HOST, API_PORT, AUTH_TOKEN, SWEEP_INTERVAL_SECONDS
from database import Store
from errors import ChatClosed, MatchmakingExhausted, NotFound, NotParticipant, PersistenceError
from feed import MessageFeed
from models import MessageCreate, ProfileCreate
from session import EnterMatching, RetryPolicy, SessionState, find_friend, resolve
from sweeper import run_periodic_sweeps, sweep_expired

logger = logging.getLogger(__name__)

if AUTH_TOKEN == "changeme":
    logger.warning("AUTH_TOKEN is still 'changeme'. Please set a secure token in your .env")


def _resume_payload(state) -> dict:
    return {
        "status": "matched",
        "match": state.match.model_dump(mode="json"),
        "partner": state.partner.model_dump(mode="json"),
    }


def create_app(store: Optional[Store] = None, *, sweep_interval: float = SWEEP_INTERVAL_SECONDS,
               retry_policy: Optional[RetryPolicy] = None) -> FastAPI:
    store = store or Store()
    feed = MessageFeed()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init_db()
        released = sweep_expired(store)
        logger.info("startup sweep released %d expired matches", released)
        task = None
        if sweep_interval > 0:
            task = asyncio.create_task(run_periodic_sweeps(store, sweep_interval))
        yield
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="48h Friends matching server", lifespan=lifespan)
    app.state.store = store
    app.state.feed = feed

    # ----------------------
    # Middleware to check Bearer token for every request
    # ----------------------
    @app.middleware("http")
    async def check_auth_middleware(request: Request, call_next):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return JSONResponse(status_code=401, content={"detail": "Missing or invalid Authorization header"})
        token = auth_header.split("Bearer ")[1]
        if token != AUTH_TOKEN:
            return JSONResponse(status_code=403, content={"detail": "Invalid token"})
        return await call_next(request)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "48h Friends matching server"}

    # ----------------------
    # Onboarding
    # ----------------------
    @app.post("/profiles", status_code=201)
    def create_profile(payload: ProfileCreate):
        try:
            profile = store.create_profile(payload)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return profile.model_dump(mode="json")

    @app.get("/profiles/{user_id}")
    def get_profile(user_id: str):
        try:
            profile = store.get_profile(user_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return profile.model_dump(mode="json")

    # ----------------------
    # Session / matching
    # ----------------------
    @app.get("/session/{user_id}")
    def session_status(user_id: str):
        try:
            state = resolve(store, user_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if isinstance(state, EnterMatching):
            return {"status": "enter_matching"}
        return _resume_payload(state)

    @app.post("/match/{user_id}")
    def match(user_id: str):
        session = SessionState(user_id=user_id)
        try:
            state = find_friend(store, session, policy=retry_policy)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except MatchmakingExhausted as e:
            raise HTTPException(status_code=503, detail=f"No match found after {e.attempts} attempts")
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return _resume_payload(state)

    @app.post("/sweep")
    def sweep():
        try:
            released = sweep_expired(store)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"released": released}

    # ----------------------
    # Chat
    # ----------------------
    @app.get("/matches/{match_id}/messages")
    def get_messages(match_id: str):
        try:
            messages = list_messages(store, match_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"messages": [m.model_dump(mode="json") for m in messages]}

    @app.post("/matches/{match_id}/messages", status_code=201)
    def post_message(match_id: str, payload: MessageCreate):
        try:
            message = send_message(store, feed, match_id, payload.sender_id, payload.content)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except NotParticipant as e:
            raise HTTPException(status_code=403, detail=str(e))
        except ChatClosed as e:
            raise HTTPException(status_code=409, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return message.model_dump(mode="json")

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level="info")
