from __future__ import annotations
import os
from langchain_openai import ChatOpenAI
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

MODEL = os.getenv("FORMCOACH_MODEL", "gpt-4o-mini")
TIMEOUT_S = float(os.getenv("FORMCOACH_LLM_TIMEOUT", "20"))


def get_llm() -> ChatOpenAI:
    # low temperature keeps form cues consistent rep to rep
    return ChatOpenAI(model=MODEL, temperature=0.2, timeout=TIMEOUT_S)
