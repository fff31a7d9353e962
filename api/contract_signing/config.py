import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./contracts.db")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 7)))
PUBLIC_DIR = os.getenv("PUBLIC_DIR", "./public")
DOCUSEAL_API_KEY = os.getenv("DOCUSEAL_API_KEY", "")
DOCUSEAL_API_URL = os.getenv("DOCUSEAL_API_URL", "https://api.docuseal.eu")
DOCUSEAL_TIMEOUT = float(os.getenv("DOCUSEAL_TIMEOUT", "30"))
SIGNING_BASE_URL = os.getenv("SIGNING_BASE_URL", "https://docuseal.eu")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# a "sending" claim older than this is considered abandoned and can be reset
SEND_CLAIM_TIMEOUT = float(os.getenv("SEND_CLAIM_TIMEOUT", str(DOCUSEAL_TIMEOUT * 2)))
