import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portal.db")

# Whop Payments Configuration
WHOP_WEBHOOK_SECRET = os.getenv("WHOP_WEBHOOK_SECRET")

# Automation hub (n8n) - receives normalized portal events
AUTOMATION_HUB_URL = os.getenv("AUTOMATION_HUB_URL") or os.getenv("N8N_WEBHOOK_URL")
AUTOMATION_HUB_API_KEY = os.getenv("AUTOMATION_HUB_API_KEY") or os.getenv("N8N_API_KEY")

# Event delivery retry policy: 3 attempts, 1s then 2s between attempts
EVENT_DELIVERY_MAX_ATTEMPTS = int(os.getenv("EVENT_DELIVERY_MAX_ATTEMPTS", "3"))
EVENT_DELIVERY_BASE_DELAY_SECONDS = float(os.getenv("EVENT_DELIVERY_BASE_DELAY_SECONDS", "1.0"))
# Upper bound for the whole retry loop so callbacks are never held open
EVENT_DELIVERY_TIMEOUT_SECONDS = float(os.getenv("EVENT_DELIVERY_TIMEOUT_SECONDS", "10"))

# Internal / admin API keys
# When INTERNAL_API_KEY is unset the internal endpoint only checks that a header is present
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY")
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

# In-memory log buffer for the admin webhook-logs view
LOG_BUFFER_CAPACITY = int(os.getenv("LOG_BUFFER_CAPACITY", "1000"))

# Warning/error alert forwarding
ENABLE_WEBHOOK_NOTIFICATIONS = os.getenv("ENABLE_WEBHOOK_NOTIFICATIONS", "false").lower() == "true"
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL")

# Frontend base URL used to build checkout return links
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
