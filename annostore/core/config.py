# annostore/core/config.py
from pathlib import Path
import os

from dotenv import load_dotenv

# 프로젝트 루트 디렉토리 (annostore/ 의 상위)
BASE_DIR = Path(__file__).resolve().parents[2]

# .env 로딩
ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

# 로그 레벨 (.env의 LOG_LEVEL로 조절, 기본 INFO)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
