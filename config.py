import os
from dotenv import load_dotenv

load_dotenv()  # Load variables from .env file

# API security
API_KEY = os.getenv("API_KEY")
DEFAULT_ALLOWED_ORIGINS = [
    "https://app.lockin.trade",
    "https://lockin.trade",
]
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "").split(",")
    if o.strip()
] or DEFAULT_ALLOWED_ORIGINS
SERVICE_NAME = os.getenv("SERVICE_NAME", "lockin-engine")

# Supabase (table store + auth provider)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_JWKS_URL = os.getenv("SUPABASE_JWKS_URL") or (
    f"{SUPABASE_URL}/auth/v1/certs" if SUPABASE_URL else None
)
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
SUPABASE_ISSUER = os.getenv(
    "SUPABASE_ISSUER",
    f"{SUPABASE_URL}/auth/v1" if SUPABASE_URL else None,
)
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")  # legacy HS256 projects
SUPABASE_WEBHOOK_SECRET = os.getenv("SUPABASE_WEBHOOK_SECRET")
SUPABASE_TIMEOUT = float(os.getenv("SUPABASE_TIMEOUT", "10"))

# Progression tunables
XP_PER_UNIT = int(os.getenv("XP_PER_UNIT", "100"))  # awarded per newly cracked unit
VIOLATION_XP_PENALTY = int(os.getenv("VIOLATION_XP_PENALTY", "30"))
TRADE_CLOSE_XP = int(os.getenv("TRADE_CLOSE_XP", "10"))

# Log file
LOG_FILE = os.getenv("LOG_FILE", "journal.log")
