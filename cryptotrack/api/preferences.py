from fastapi import APIRouter, Depends

from cryptotrack.api.deps import get_alert_feed, get_theme_preferences
from cryptotrack.models.preferences import AppTheme
from cryptotrack.schemas.market import AlertOut, ThemeResponse, ThemeUpdate
from cryptotrack.services.alerts import AlertFeed
from cryptotrack.services.preferences import ThemePreferences


router = APIRouter(tags=["preferences"])


def _theme_payload(theme: AppTheme) -> ThemeResponse:
    return ThemeResponse(theme=theme, display_name=theme.display_name)


@router.get("/preferences/theme", response_model=ThemeResponse)
async def get_theme(prefs: ThemePreferences = Depends(get_theme_preferences)):
    return _theme_payload(prefs.current())


@router.put("/preferences/theme", response_model=ThemeResponse)
async def set_theme(body: ThemeUpdate, prefs: ThemePreferences = Depends(get_theme_preferences)):
    return _theme_payload(prefs.set(body.theme))


@router.post("/preferences/theme/toggle", response_model=ThemeResponse)
async def toggle_theme(prefs: ThemePreferences = Depends(get_theme_preferences)):
    return _theme_payload(prefs.toggle())


@router.get("/alerts", response_model=list[AlertOut])
async def list_alerts(alerts: AlertFeed = Depends(get_alert_feed)):
    return [AlertOut(title=a.title, message=a.message, created_at=a.created_at) for a in alerts.list()]
