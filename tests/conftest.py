import os

os.environ.setdefault("FINTRACK_DATABASE_URL", "sqlite://")
os.environ.setdefault("FINTRACK_BCRYPT_ROUNDS", "4")
os.environ.setdefault("FINTRACK_SCHEDULER_ENABLED", "false")
os.environ.setdefault("FINTRACK_SMTP_HOST", "")
