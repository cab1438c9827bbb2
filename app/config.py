import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    SERVICE_NAME = os.getenv("SERVICE_NAME", "autonomy-compute-api")
    SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Empty means the in-memory store
    DATABASE_URL = os.getenv("DATABASE_URL", "")

    COMPUTATION_DELAY_SECONDS = float(os.getenv("COMPUTATION_DELAY_SECONDS", "5"))
    MAX_RUNNING_JOBS = int(os.getenv("MAX_RUNNING_JOBS", "100"))
    DEFAULT_ITERATIONS = int(os.getenv("DEFAULT_ITERATIONS", "100"))
    JOB_RETENTION_HOURS = float(os.getenv("JOB_RETENTION_HOURS", "24"))
    PURGE_INTERVAL_MINUTES = int(os.getenv("PURGE_INTERVAL_MINUTES", "60"))

    # "key1:read|compute,key2:read"
    API_KEYS = os.getenv("API_KEYS", "")

    SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN")
    SLACK_CHANNEL_JOB_STATUS = os.getenv("SLACK_CHANNEL_JOB_STATUS")
    SLACK_MENTIONS = os.getenv("SLACK_MENTIONS")

    WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10"))

    PERMISSIONS = ("read", "compute", "cancel", "schedule")

config = Config()
