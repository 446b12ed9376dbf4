"""
MoodHabit Analytics — FastAPI Backend
All analytics logic lives in moodhabit/. This module only validates input,
loads a snapshot for the request and serialises the result.

Run with:  uvicorn main:app --reload
"""

import asyncio
import time
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from moodhabit import __version__
from moodhabit.adaptive_thresholds import AdaptiveThresholdService
from moodhabit.api_exceptions import MoodHabitAPIError, ResourceNotFoundError
from moodhabit.config import Settings, load_settings
from moodhabit.feedback import RecommendationFeedbackSink
from moodhabit.habit_analytics import HabitAnalytics
from moodhabit.record_store import JsonFileKeyValueStore, RecordStore
from moodhabit.schemas import CurrentMood, FeedbackRequest, MoodState, PatternRequest, PatternType
from moodhabit.structured_logging import logger, setup_json_logging


# ── dependencies ──────────────────────────────────────────────────────────────

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def reference_day(today: Optional[date] = Query(None, description="Anchor date, defaults to the server's today")) -> date:
    return today or date.today()


def current_mood(
    mood: Optional[MoodState] = Query(None),
    intensity: int = Query(5, ge=1, le=10),
) -> Optional[CurrentMood]:
    if mood is None:
        return None
    return CurrentMood(mood_state=mood, intensity=intensity)


async def get_threshold_service(request: Request) -> AdaptiveThresholdService:
    """The app-wide threshold service, loaded from the store on first use."""
    state = request.app.state
    async with state.threshold_lock:
        if state.threshold_service is None:
            state.threshold_service = await AdaptiveThresholdService(
                state.store, state.settings.thresholds
            ).load()
    return state.threshold_service


async def load_analytics(
    user_id: Optional[str] = Query(None, min_length=1, max_length=100),
    today: date = Depends(reference_day),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    thresholds: AdaptiveThresholdService = Depends(get_threshold_service),
) -> HabitAnalytics:
    return await HabitAnalytics.load(
        store, user_id or settings.user_id, today, thresholds=thresholds, policy=settings.policy
    )


router = APIRouter()


# ── health & stats ────────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@router.get("/api/stats")
async def get_stats(
    window_days: int = Query(7, ge=1, le=365),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    return JSONResponse({
        "success":                 True,
        "overall_completion_rate": analytics.get_overall_completion_rate(),
        "completion_rate":         analytics.get_completion_rate(window_days),
        "total_completions":       analytics.get_total_completions(),
        "streaks":                 analytics.get_streaks().to_dict(),
        "daily_completion":        [d.to_dict() for d in analytics.get_daily_completion_data(window_days)],
        "weekly_report":           analytics.get_weekly_report().to_dict(),
    })


@router.get("/api/mood-trends")
async def get_mood_trends(
    window_days: int = Query(30, ge=1, le=365),
    zero_fill: bool = Query(False),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    trends = analytics.get_mood_trends(window_days, zero_fill)
    return JSONResponse({"success": True, "trends": [t.to_dict() for t in trends]})


@router.get("/api/analytics")
async def get_mood_habit_analytics(
    window_days: int = Query(30, ge=1, le=365),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    return JSONResponse({"success": True, "analytics": analytics.get_mood_habit_analytics(window_days).to_dict()})


@router.get("/api/correlations")
async def get_correlations(analytics: HabitAnalytics = Depends(load_analytics)):
    correlations = analytics.get_habit_mood_correlations()
    return JSONResponse({"success": True, "correlations": [c.to_dict() for c in correlations]})


# ── predictive ────────────────────────────────────────────────────────────────

@router.get("/api/predictions")
async def get_predictions(
    hour: Optional[int] = Query(None, ge=0, le=23),
    mood: Optional[CurrentMood] = Depends(current_mood),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    predictions = analytics.get_habit_success_predictions(mood, hour)
    return JSONResponse({"success": True, "predictions": [p.to_dict() for p in predictions]})


@router.get("/api/risk-alerts")
async def get_risk_alerts(
    hour: Optional[int] = Query(None, ge=0, le=23),
    mood: Optional[CurrentMood] = Depends(current_mood),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    dip = analytics.get_mood_dip_alert()
    return JSONResponse({
        "success":        True,
        "alerts":         [a.to_dict() for a in analytics.get_risk_alerts(mood, hour)],
        "mood_dip_alert": dip.to_dict() if dip else None,
    })


@router.get("/api/timing")
async def get_timing(
    mood: Optional[CurrentMood] = Depends(current_mood),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    suggestions = analytics.get_optimal_timing_suggestions(mood)
    return JSONResponse({"success": True, "suggestions": [s.to_dict() for s in suggestions]})


@router.get("/api/recommendations")
async def get_recommendations(
    mood: MoodState = Query(...),
    intensity: int = Query(5, ge=1, le=10),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    bundle = analytics.get_mood_triggered_recommendations(CurrentMood(mood_state=mood, intensity=intensity))
    return JSONResponse({"success": True, "recommendations": bundle.to_dict()})


@router.get("/api/forecast")
async def get_forecast(analytics: HabitAnalytics = Depends(load_analytics)):
    return JSONResponse({"success": True, "forecast": analytics.get_weekly_forecast().to_dict()})


@router.get("/api/predictive")
async def get_predictive(
    hour: Optional[int] = Query(None, ge=0, le=23),
    mood: Optional[CurrentMood] = Depends(current_mood),
    analytics: HabitAnalytics = Depends(load_analytics),
):
    result = analytics.get_ai_predictive_analytics(mood, hour)
    return JSONResponse({"success": True, **result.to_dict()})


# ── adaptive thresholds ───────────────────────────────────────────────────────

@router.post("/api/patterns")
async def record_pattern(
    body: PatternRequest,
    service: AdaptiveThresholdService = Depends(get_threshold_service),
):
    threshold = await service.record_pattern(
        body.user_id, body.pattern_type, body.metric, body.value, body.timestamp, body.context
    )
    return JSONResponse({"success": True, "threshold": threshold.to_dict() if threshold else None})


@router.get("/api/thresholds/{user_id}")
async def get_user_thresholds(
    user_id: str,
    service: AdaptiveThresholdService = Depends(get_threshold_service),
):
    return JSONResponse({
        "success":         True,
        "thresholds":      [t.to_dict() for t in service.get_user_thresholds(user_id)],
        "recommendations": [r.to_dict() for r in service.get_threshold_recommendations(user_id)],
    })


@router.get("/api/thresholds/{user_id}/{pattern_type}/{metric}")
async def get_threshold(
    user_id: str,
    pattern_type: PatternType,
    metric: str,
    value: Optional[float] = Query(None),
    service: AdaptiveThresholdService = Depends(get_threshold_service),
):
    threshold = service.get_threshold(user_id, pattern_type.value, metric)
    if threshold is None:
        raise ResourceNotFoundError("Threshold", f"{user_id}/{pattern_type.value}/{metric}")
    payload = {"success": True, "threshold": threshold.to_dict()}
    if value is not None:
        payload["is_below"] = service.is_below_threshold(user_id, pattern_type.value, metric, value)
        payload["is_above"] = service.is_above_threshold(user_id, pattern_type.value, metric, value)
    return JSONResponse(payload)


# ── feedback ──────────────────────────────────────────────────────────────────

@router.post("/api/feedback")
async def submit_feedback(body: FeedbackRequest, store: RecordStore = Depends(get_store)):
    item = await RecommendationFeedbackSink(store).record_feedback(
        suggestion_id = body.suggestion_id,
        rating        = body.rating,
        implemented   = body.implemented,
        effectiveness = body.effectiveness,
        comments      = body.comments,
        mood_state    = body.mood_state,
    )
    return JSONResponse({"success": True, "feedback": item.model_dump()})


@router.get("/api/feedback/summary")
async def feedback_summary(store: RecordStore = Depends(get_store)):
    summary = await RecommendationFeedbackSink(store).summary()
    return JSONResponse({"success": True, "summary": [s.to_dict() for s in summary]})


# ── app ───────────────────────────────────────────────────────────────────────

def create_app(store: Optional[RecordStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    app = FastAPI(
        title="MoodHabit Analytics API",
        description="Mood and habit analytics, predictions and adaptive thresholds",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.store = store or RecordStore(JsonFileKeyValueStore(settings.data_dir))
    app.state.threshold_service = None
    app.state.threshold_lock = asyncio.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8081", "http://localhost:8000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        logger.log_request(
            request.method,
            request.url.path,
            user_id=request.query_params.get("user_id"),
            request_id=request.headers.get("X-Request-ID"),
        )
        try:
            response = await call_next(request)
            logger.log_response(response.status_code, (time.time() - start) * 1000)
            return response
        finally:
            logger.clear_context()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors."""
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Request validation failed",
                "error_code": "VALIDATION_ERROR",
                "details": {
                    "errors": [
                        {
                            "field": ".".join(str(x) for x in err["loc"]),
                            "message": err["msg"],
                        }
                        for err in exc.errors()
                    ]
                },
            },
        )

    @app.exception_handler(MoodHabitAPIError)
    async def moodhabit_exception_handler(request: Request, exc: MoodHabitAPIError):
        """Handle MoodHabit custom exceptions."""
        logger.warning(f"API Error: {exc.error_code} - {exc.message}", error_code=exc.error_code)
        return exc.to_response()

    @app.on_event("startup")
    async def startup():
        setup_json_logging(settings.log_file, settings.log_level)
        logger.info("MoodHabit analytics started", data_dir=settings.data_dir)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
