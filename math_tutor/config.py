import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseModel):
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    attempt_lookback: int = int(os.getenv("ATTEMPT_LOOKBACK", "30"))
    tip_cooldown_seconds: float = float(os.getenv("TIP_COOLDOWN_SECONDS", "120"))
    proactive_tip_cooldown_seconds: float = float(os.getenv("PROACTIVE_TIP_COOLDOWN_SECONDS", "180"))
    filler_tip_probability: float = float(os.getenv("FILLER_TIP_PROBABILITY", "0.1"))
    default_session_minutes: int = int(os.getenv("DEFAULT_SESSION_MINUTES", "30"))

settings = Settings()
