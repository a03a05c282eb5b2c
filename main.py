from dotenv import load_dotenv
load_dotenv()

import uvicorn
from app import app

if __name__ == "__main__":
    """
    Main entry point for the Comic Script Studio API and its Gradio UI (/ui).

    Run from the project root:

        uvicorn main:app --reload

    Requires GEMINI_API_KEY (or API_KEY) in the environment or in .env.
    Install dependencies with: pip install -e .
    """
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
