import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "") or os.getenv("GEMINI_API_KEY", "")

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
IMAGEN_MODEL = os.getenv("IMAGEN_MODEL", "imagen-4.0-generate-001")

X_CLIENT_ID = os.getenv("X_CLIENT_ID", "")
X_CLIENT_SECRET = os.getenv("X_CLIENT_SECRET", "")
X_CALLBACK_URL = os.getenv("X_CALLBACK_URL", "http://localhost:8501/auth/callback")
X_API_BASE_URL = os.getenv("X_API_BASE_URL", "https://api.x.com")
X_AUTHORIZE_URL = "https://x.com/i/oauth2/authorize"
X_SCOPES = ["tweet.read", "tweet.write", "users.read", "media.write", "offline.access"]

STAGE_DELAY_SECONDS = float(os.getenv("STAGE_DELAY_SECONDS", "3.0"))
IMAGE_DELAY_SECONDS = float(os.getenv("IMAGE_DELAY_SECONDS", "1.0"))
AUTH_TIMEOUT_SECONDS = float(os.getenv("AUTH_TIMEOUT_SECONDS", "300"))
MAX_STAGES_PER_RUN = int(os.getenv("MAX_STAGES_PER_RUN", "50"))

DEFAULT_IMAGE_COUNT = int(os.getenv("DEFAULT_IMAGE_COUNT", "3"))
MAX_IMAGE_COUNT = 4

DEFAULT_TONE = "Conversational / Casual"
DEFAULT_PLATFORM = "Twitter"
DEFAULT_LANGUAGE = "Vietnamese"
DEFAULT_LENGTH = "Medium"
