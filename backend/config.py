"""
Runtime configuration for the matter opening service.
Values come from the environment; backend/.env is loaded first when present.
"""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'matter_opening')

# Collections
DRAFTS_COLLECTION = "matter_drafts"
CLIENTS_COLLECTION = "clients"
SUBMISSIONS_COLLECTION = "matter_submissions"
COUNTERS_COLLECTION = "counters"

# Submission sink: HTTP when a URL is configured, MongoDB otherwise
SUBMISSION_SINK_URL = (os.environ.get('SUBMISSION_SINK_URL') or '').strip().rstrip('/')
SUBMISSION_SINK_TOKEN = (os.environ.get('SUBMISSION_SINK_TOKEN') or '').strip()

MATTER_FORM_VERSION = os.environ.get('MATTER_FORM_VERSION', '1.0')

# Compliance sign-off is valid for six months from the compliance date
COMPLIANCE_VALIDITY_MONTHS = 6


def get_sink_timeout() -> float:
    """Timeout (seconds) for the HTTP submission sink. Falls back to 15s on bad input."""
    raw = os.environ.get('SUBMISSION_SINK_TIMEOUT', '15')
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid SUBMISSION_SINK_TIMEOUT=%r, using 15s", raw)
        return 15.0
    return value if value > 0 else 15.0


def get_guidance_url(attestation: str) -> str:
    """
    Guidance document URL for a compliance attestation, e.g.
    RISK_GUIDANCE_CLIENT_RISK_URL for "client_risk". Empty string when unset.
    """
    env_key = f"RISK_GUIDANCE_{attestation.upper()}_URL"
    return (os.environ.get(env_key) or '').strip()
