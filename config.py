import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Environment configuration"""

    # Database (MongoDB). Leave unset to run on the in-memory backend.
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME")
    # Multi-document transactions need a replica set
    MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS", True)

    # Namespace mixed into every derived address
    PROGRAM_ID = os.getenv("PROGRAM_ID", "HSh6ntCpps9Zfa9rsZjqYzEXpK3uXqEXY7iLegF9angR")

    # ProgramConfig values written by `initialize` when no arguments are given
    MAX_TITLE_LEN = int(os.getenv("MAX_TITLE_LEN", 30))
    MAX_QUESTION_LEN = int(os.getenv("MAX_QUESTION_LEN", 200))
    MAX_ANSWER_LEN = int(os.getenv("MAX_ANSWER_LEN", 50))

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", 8000))


settings = Settings()
