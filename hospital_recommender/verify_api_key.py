"""Quick check that the configured Gemini API key works."""
import asyncio
import os
import sys

from dotenv import load_dotenv

from .config import DEFAULT_FAST_MODEL
from .errors import RemoteServiceError
from .gemini_client import GeminiClient

PLACEHOLDER_KEYS = {"YOUR_ACTUAL_GEMINI_API_KEY", "PASTE_YOUR_REAL_API_KEY_HERE"}


def _mask(key: str) -> str:
    return f"{key[:10]}..." if key else "NOT FOUND"


async def _ping(api_key: str, model: str) -> str:
    client = GeminiClient(api_key=api_key, fast_model=model, capable_model=model)
    return await client.generate("Hello, world!")


def main() -> int:
    load_dotenv(".env.local")
    load_dotenv()

    print("Testing Gemini API Key...")
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
    print(f"API Key: {_mask(api_key)}")

    if not api_key or api_key in PLACEHOLDER_KEYS:
        print("❌ API key not set properly in .env / .env.local")
        print("Please set GEMINI_API_KEY to your actual API key from Google AI Studio")
        return 1

    model = os.getenv("GEMINI_FAST_MODEL", DEFAULT_FAST_MODEL)
    try:
        text = asyncio.run(_ping(api_key, model))
    except RemoteServiceError as e:
        print(f"❌ API Key test failed ({e.status_code}): {e.message}")
        if "API key not valid" in e.message:
            print("\n🔧 How to fix:")
            print("1. Go to https://aistudio.google.com/app/apikey")
            print("2. Create a new API key")
            print("3. Update GEMINI_API_KEY in .env.local")
            print("4. Restart the service")
        return 1

    print("✅ API Key is working!")
    print(f"Response: {text}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
