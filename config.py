import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from models import ArtStyle

load_dotenv()

# --- Built-in Art Styles ---
ART_STYLES: List[ArtStyle] = [
    ArtStyle(
        id="classic-american",
        name="Classic American",
        imageUrl="https://storage.googleapis.com/makerflow-prod.appspot.com/media/images/classic-american.webp",
        prompt="classic American comic book art style, bold inks, vibrant colors, dynamic action poses, "
               "reminiscent of the Silver Age of comics.",
    ),
    ArtStyle(
        id="manga",
        name="Manga",
        imageUrl="https://storage.googleapis.com/makerflow-prod.appspot.com/media/images/manga.webp",
        prompt="Japanese manga style, black and white, detailed emotional expressions, dynamic panel layouts, "
               "screentones for shading, sharp lines.",
    ),
    ArtStyle(
        id="film-noir",
        name="Film Noir",
        imageUrl="https://storage.googleapis.com/makerflow-prod.appspot.com/media/images/film-noir.webp",
        prompt="film noir comic style, high-contrast black and white, dramatic shadows, gritty textures, "
               "cinematic angles, mysterious atmosphere.",
    ),
    ArtStyle(
        id="indie",
        name="Indie",
        imageUrl="https://storage.googleapis.com/makerflow-prod.appspot.com/media/images/indie.webp",
        prompt="indie comic art style, quirky character designs, unconventional color palettes, hand-drawn feel, "
               "expressive and simple lines.",
    ),
    ArtStyle(
        id="sci-fi",
        name="Sci-Fi",
        imageUrl="https://storage.googleapis.com/makerflow-prod.appspot.com/media/images/sci-fi.webp",
        prompt="hard science fiction comic art, detailed technology, sleek futuristic designs, clean lines, "
               "cool color palette with neon highlights.",
    ),
]


def find_art_style(style_id: str) -> Optional[ArtStyle]:
    return next((s for s in ART_STYLES if s.id == style_id), None)


# --- Settings ---
class Settings(BaseModel):
    gemini_api_key: Optional[str] = None
    text_model: str = "gemini-2.5-pro"
    fast_text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    chat_model: str = "gemini-2.5-flash"
    retry_budget: int = 3
    retry_initial_delay: float = 2.0  # seconds
    panel_delay: float = 1.2  # seconds between consecutive panel calls
    cover_excerpt_chars: int = 500
    database_url: str = "sqlite:///comics.db"
    log_level: str = "INFO"
    mount_gradio_ui: bool = True
    api_url: str = "http://127.0.0.1:8000"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Builds settings from environment variables (override any default via env)."""
    defaults = Settings()
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
        text_model=os.getenv("TEXT_MODEL", defaults.text_model),
        fast_text_model=os.getenv("FAST_TEXT_MODEL", defaults.fast_text_model),
        image_model=os.getenv("IMAGE_MODEL", defaults.image_model),
        chat_model=os.getenv("CHAT_MODEL", defaults.chat_model),
        retry_budget=int(os.getenv("RETRY_BUDGET", defaults.retry_budget)),
        retry_initial_delay=float(os.getenv("RETRY_INITIAL_DELAY", defaults.retry_initial_delay)),
        panel_delay=float(os.getenv("PANEL_DELAY", defaults.panel_delay)),
        cover_excerpt_chars=int(os.getenv("COVER_EXCERPT_CHARS", defaults.cover_excerpt_chars)),
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        mount_gradio_ui=_env_flag("MOUNT_GRADIO_UI", defaults.mount_gradio_ui),
        api_url=os.getenv("API_URL", defaults.api_url),
    )


settings = load_settings()
