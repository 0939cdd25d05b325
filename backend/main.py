from fastapi import FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from typing import Optional
import asyncio

from analytics import compute_game_analytics
from config import get_settings
from errors import GameError, InternalError, NotFoundError
from game_controller import (
    TransitionResult,
    all_players_answered,
    cancel_game,
    compute_question_results,
    create_game,
    finish_question,
    join_game,
    next_question,
    start_game,
    start_question,
    verify_host,
)
from logger import setup_logging, get_logger, log_game_event, set_request_id
from models import (
    ComputeGameAnalyticsRequest,
    ComputeGameAnalyticsResult,
    ComputeQuestionResultsRequest,
    ComputeQuestionResultsResult,
    Game,
    GameAnalytics,
    GameLeaderboard,
    GameSettings,
    Player,
    Question,
    SubmitAnswerRequest,
    SubmitAnswerResult,
)
from store import analytics_path, create_store, leaderboard_path, player_path
from submission import load_game, submit_answer

# Initialise structured, file-based logging
setup_logging()
logger = get_logger("QuizRush")
settings = get_settings()

app = FastAPI(title="QuizRush API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Document store (in-memory or Firestore, per QUIZ_STORE_BACKEND)
store = create_store(settings)

# Timer tasks per game
timer_tasks: dict[str, asyncio.Task] = {}


# --- Request/Response Models ---

class CreateGameRequest(BaseModel):
    questions: list[Question] = Field(min_length=1)
    hostId: str = "host"
    title: str = ""
    settings: GameSettings = GameSettings()


class CreateGameResponse(BaseModel):
    gameId: str
    gamePin: str
    hostToken: str


class JoinRequest(BaseModel):
    gamePin: str
    name: str = Field(min_length=1, max_length=30)


class JoinResponse(BaseModel):
    gameId: str
    playerId: str


class TransitionResponse(BaseModel):
    ok: bool = True
    state: str
    currentQuestionIndex: int
    resultsError: Optional[str] = None


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        state=result.game.state,
        currentQuestionIndex=result.game.currentQuestionIndex,
        resultsError=result.results_error,
    )


# --- Middleware & error mapping ---

@app.middleware("http")
async def request_context(request: Request, call_next):
    rid = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


@app.exception_handler(GameError)
async def handle_game_error(request: Request, exc: GameError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"⛔ {request.method} {request.url.path}: {exc.code} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={
        "code": "invalid-argument",
        "detail": "Invalid request body",
        "details": {"errors": jsonable_encoder(exc.errors())},
    })


async def _call(operation: str, fn, *args):
    """Run a blocking store operation off the event loop; unexpected errors become `internal`."""
    try:
        return await run_in_threadpool(fn, *args)
    except GameError:
        raise
    except Exception as e:
        logger.error(f"❌ {operation} failed: {e}", exc_info=True)
        raise InternalError(f"An error occurred while processing {operation}") from e


async def _require_host(game_id: str, host_token: Optional[str]) -> None:
    await _call("verifyHost", verify_host, store, game_id, host_token)


# --- Timer Logic ---

async def run_question_timer(game_id: str, question_index: int, seconds: float):
    """Finish the question once its time limit (plus grace) has passed"""
    await asyncio.sleep(seconds)
    try:
        game = await run_in_threadpool(load_game, store, game_id)
    except NotFoundError:
        return  # cancelled meanwhile
    if game.state != 'question' or game.currentQuestionIndex != question_index:
        return  # host already moved on

    logger.info(f"⏰ Time is up for game {game.gamePin} Q{question_index + 1}")
    timer_tasks.pop(game_id, None)
    try:
        result = await run_in_threadpool(finish_question, store, game_id)
    except GameError as e:
        # A concurrent host action won the transition
        logger.info(f"⏰ Timer finish skipped for game {game_id}: {e.message}")
        return
    log_game_event("question_timer_expired", game_id=game_id, data={
        "question_index": question_index,
        "results_error": result.results_error,
    })


def schedule_timer(game: Game):
    cancel_timer(game.id)
    index = game.currentQuestionIndex
    time_limit = game.questions[index].timeLimit if index < len(game.questions) else settings.default_time_limit
    seconds = time_limit + settings.grace_period_seconds
    timer_tasks[game.id] = asyncio.create_task(run_question_timer(game.id, index, seconds))


def cancel_timer(game_id: str):
    """Cancel any running timer for a game"""
    if game_id in timer_tasks:
        timer_tasks[game_id].cancel()
        del timer_tasks[game_id]


async def auto_finish_question(game_id: str, question_index: int):
    """Finish early once every player has answered (autoFinishMode)"""
    if not await run_in_threadpool(all_players_answered, store, game_id, question_index):
        return
    cancel_timer(game_id)
    try:
        await run_in_threadpool(finish_question, store, game_id)
    except GameError as e:
        logger.info(f"⏩ Auto-finish skipped for game {game_id}: {e.message}")
        return
    logger.info(f"⏩ All players answered in game {game_id}; question {question_index + 1} finished")


# --- RPC Endpoints ---

@app.post("/api/rpc/submitAnswer", response_model=SubmitAnswerResult)
async def submit_answer_rpc(request: SubmitAnswerRequest):
    """Score and record a player's answer"""
    result = await _call("submitAnswer", submit_answer, store, request)

    try:
        game = await _call("submitAnswer", load_game, store, request.gameId)
    except NotFoundError:
        # Cancelled after the answer was recorded; the answer still stands
        logger.info(f"ℹ️ Game {request.gameId} is gone; skipping auto-finish")
        return result
    if game.settings.autoFinishMode:
        await auto_finish_question(game.id, request.questionIndex)
    return result


@app.post("/api/rpc/computeQuestionResults", response_model=ComputeQuestionResultsResult)
async def compute_question_results_rpc(
    request: ComputeQuestionResultsRequest,
    x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
):
    """Rebuild the leaderboard aggregate for a question (host only, safe to retry)"""
    if request.gameId:
        await _require_host(request.gameId, x_host_token)
    board = await _call(
        "computeQuestionResults",
        compute_question_results, store, request.gameId, request.questionIndex, request.questionType,
    )
    return ComputeQuestionResultsResult(
        success=True,
        questionIndex=board.questionIndex,
        totalAnswered=board.totalAnswered,
        totalPlayers=board.totalPlayers,
    )


@app.post("/api/rpc/computeGameAnalytics", response_model=ComputeGameAnalyticsResult)
async def compute_game_analytics_rpc(
    request: ComputeGameAnalyticsRequest,
    x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token"),
):
    """Build the post-game analytics document (host only, ended games)"""
    if request.gameId:
        await _require_host(request.gameId, x_host_token)
    analytics = await _call("computeGameAnalytics", compute_game_analytics, store, request.gameId)
    return ComputeGameAnalyticsResult(
        success=True,
        totalPlayers=analytics.totalPlayers,
        totalQuestions=analytics.totalQuestions,
    )


# --- REST Endpoints ---

@app.post("/api/games", response_model=CreateGameResponse)
async def create_game_endpoint(request: CreateGameRequest):
    """Create a new game from a question set"""
    game, host_token = await _call(
        "createGame", create_game, store, request.questions, request.hostId, request.settings, request.title,
    )
    return CreateGameResponse(gameId=game.id, gamePin=game.gamePin, hostToken=host_token)


@app.post("/api/games/join", response_model=JoinResponse)
async def join_game_endpoint(request: JoinRequest):
    """Join a game in the lobby by PIN"""
    game, player = await _call("joinGame", join_game, store, request.gamePin, request.name)
    return JoinResponse(gameId=game.id, playerId=player.id)


@app.get("/api/games/{game_id}", response_model=Game)
async def get_game(game_id: str):
    """Sanitized game state (no answer key, no host token)"""
    return await _call("getGame", load_game, store, game_id)


@app.get("/api/games/{game_id}/leaderboard", response_model=GameLeaderboard)
async def get_leaderboard(game_id: str):
    data = await _call("getLeaderboard", store.get, leaderboard_path(game_id))
    if data is None:
        raise NotFoundError("Leaderboard not found")
    return GameLeaderboard.model_validate(data)


@app.get("/api/games/{game_id}/analytics", response_model=GameAnalytics)
async def get_analytics(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    await _require_host(game_id, x_host_token)
    data = await _call("getAnalytics", store.get, analytics_path(game_id))
    if data is None:
        raise NotFoundError("Analytics not computed yet")
    return GameAnalytics.model_validate(data)


@app.get("/api/games/{game_id}/players/{player_id}", response_model=Player)
async def get_player(game_id: str, player_id: str):
    data = await _call("getPlayer", store.get, player_path(game_id, player_id))
    if data is None:
        raise NotFoundError("Player not found")
    return Player.model_validate(data)


@app.post("/api/games/{game_id}/start", response_model=TransitionResponse)
async def start_game_endpoint(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    """Lock in the question set and move to the first question (host only)"""
    await _require_host(game_id, x_host_token)
    game = await _call("startGame", start_game, store, game_id)
    return _transition_response(TransitionResult(game=game))


@app.post("/api/games/{game_id}/question/start", response_model=TransitionResponse)
async def start_question_endpoint(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    """Open the current question for answers (host only)"""
    await _require_host(game_id, x_host_token)
    game = await _call("startQuestion", start_question, store, game_id)
    if game.settings.timerMode:
        schedule_timer(game)
    return _transition_response(TransitionResult(game=game))


@app.post("/api/games/{game_id}/question/finish", response_model=TransitionResponse)
async def finish_question_endpoint(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    """Close the current question and publish results (host only)"""
    await _require_host(game_id, x_host_token)
    cancel_timer(game_id)
    result = await _call("finishQuestion", finish_question, store, game_id)
    return _transition_response(result)


@app.post("/api/games/{game_id}/next", response_model=TransitionResponse)
async def next_question_endpoint(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    """Advance to the next question, or end the game after the last one (host only)"""
    await _require_host(game_id, x_host_token)
    cancel_timer(game_id)
    result = await _call("nextQuestion", next_question, store, game_id)
    return _transition_response(result)


@app.delete("/api/games/{game_id}")
async def cancel_game_endpoint(game_id: str, x_host_token: Optional[str] = Header(default=None, alias="X-Host-Token")):
    """Cancel a game and delete all of its data (host only)"""
    await _require_host(game_id, x_host_token)
    cancel_timer(game_id)
    removed = await _call("cancelGame", cancel_game, store, game_id)
    return {"ok": True, "documentsRemoved": removed}


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "store": settings.store_backend}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
