import sys
import asyncio

from teamflow import config
from teamflow.errors import UpstreamGenerationError
from teamflow.llm import GeminiClient


async def _smoke(client: GeminiClient) -> str:
    return await client.generate("Hello, this is a test.")


def main() -> int:
    if not config.GOOGLE_API_KEY:
        print("Error: GOOGLE_API_KEY not found in environment variables")
        print("Please set your API key in the .env file")
        return 1

    client = GeminiClient()
    try:
        print("Available models:")
        for name in client.list_models():
            print(f"- {name}")

        print(f"\nTesting model {client.model_name}...")
        text = asyncio.run(_smoke(client))
        print("Test successful!")
        print(f"Response: {text}")
    except UpstreamGenerationError as e:
        print(f"Error: {e}")
        print("\nTry setting GEMINI_MODEL to one of the models listed above.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
