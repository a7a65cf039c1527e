#achievements.py
from fastapi import APIRouter, Depends, HTTPException, Request
from dotenv import load_dotenv
import os

from readrise.config.environment import load_engine_settings
from readrise.routes.error_responses import safe_api_error_response
from readrise.services.achievement_engine import AchievementEngine
from readrise.services.achievement_store import SupabaseAchievementStore
from readrise.services.errors import StatsUnavailableError
from readrise.services.records import CheckAchievementsRequest, CheckAchievementsResponse
from readrise.services.supabase_rest import SupabaseRestRepository

load_dotenv()

router = APIRouter(prefix="/api", tags=["Achievements"])
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

supabase_repo = SupabaseRestRepository(base_url=SUPABASE_URL, service_role_key=SUPABASE_KEY)
achievement_engine = AchievementEngine(
    SupabaseAchievementStore(supabase_repo),
    settings=load_engine_settings(),
)


def get_achievement_engine() -> AchievementEngine:
    return achievement_engine


def current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


@router.post("/achievements/check", response_model=CheckAchievementsResponse)
async def check_achievements(
    payload: CheckAchievementsRequest | None = None,
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    session = payload.session if payload else None
    if session is not None and session.user_id != user_id:
        raise HTTPException(status_code=403, detail="Session belongs to another user.")
    unlocked = await engine.check_all_achievements(user_id, session)
    return CheckAchievementsResponse(unlocked=unlocked)


@router.get("/achievements")
async def list_achievements(
    request: Request,
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    try:
        overview = await engine.get_achievement_overview(user_id)
    except StatsUnavailableError as e:
        return safe_api_error_response(
            request=request,
            error_code="ACHIEVEMENTS_UNAVAILABLE",
            message="Achievements are temporarily unavailable.",
            status_code=503,
            exc=e,
        )
    return [item.model_dump(mode="json") for item in overview]


@router.get("/achievements/unlocked")
async def list_unlocked_achievements(
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    unlocked = await engine.get_unlocked_achievements(user_id)
    return [item.model_dump(mode="json") for item in unlocked]


@router.get("/achievements/progress")
async def list_achievement_progress(
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    progress = await engine.get_achievement_progress(user_id)
    return [item.model_dump(mode="json") for item in progress]


@router.get("/achievements/{achievement_key}/unlocked")
async def achievement_unlocked(
    achievement_key: str,
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    return {
        "key": achievement_key,
        "unlocked": await engine.is_achievement_unlocked(user_id, achievement_key),
    }


@router.get("/stats")
async def user_stats(
    request: Request,
    user_id: str = Depends(current_user_id),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    try:
        stats = await engine.calculate_user_stats(user_id)
    except StatsUnavailableError as e:
        return safe_api_error_response(
            request=request,
            error_code="STATS_UNAVAILABLE",
            message="Reading stats are temporarily unavailable.",
            status_code=503,
            exc=e,
        )
    return stats.model_dump()
