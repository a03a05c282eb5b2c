import base64
import json
import logging
from typing import Any, List, Optional

import google.generativeai as genai
from google.generativeai.types import GenerationConfig, HarmCategory, HarmBlockThreshold
from pydantic import BaseModel, TypeAdapter, ValidationError

from config import settings
from errors import ConfigurationError, EnhancementError, PipelineStageError, StageContractError
from models import AspectRatio, Character, LAYOUT_TAGS, PageLayout, PanelSpec, Scene
from services import prompts
from services.retry import with_retry

logger = logging.getLogger(__name__)

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}


# --- Configuration ---
_configured = False


def configure_genai() -> str:
    api_key = settings.gemini_api_key
    if not api_key:
        raise ConfigurationError("API_KEY or GEMINI_API_KEY not found in .env file.")
    genai.configure(api_key=api_key)
    return api_key


def get_model(model_name: str, **kwargs: Any) -> genai.GenerativeModel:
    """Returns a model handle, configuring the SDK on first use."""
    global _configured
    if not _configured:
        configure_genai()
        _configured = True
    return genai.GenerativeModel(model_name, **kwargs)


async def _generate(model_name: str, contents: Any, json_output: bool = False):
    model = get_model(model_name)
    kwargs: dict = {"safety_settings": SAFETY_SETTINGS}
    if json_output:
        kwargs["generation_config"] = GenerationConfig(response_mime_type="application/json")
    return await with_retry(
        lambda: model.generate_content_async(contents, **kwargs),
        retries=settings.retry_budget,
        delay=settings.retry_initial_delay,
    )


# --- Response Contracts ---
class _CharacterEnvelope(BaseModel):
    characters: List[Character]


class _SceneEnvelope(BaseModel):
    scenes: List[Scene]


_PANEL_LIST = TypeAdapter(List[PanelSpec])
_LAYOUT_LIST = TypeAdapter(List[PageLayout])


def _parse_json(stage: str, text: Optional[str]) -> Any:
    try:
        return json.loads(text or "")
    except (TypeError, ValueError) as e:
        raise StageContractError(stage=stage, detail=f"Malformed JSON received from API for {stage}.") from e


def _validate(stage: str, validator: Any, data: Any, detail: str) -> Any:
    try:
        if isinstance(validator, TypeAdapter):
            return validator.validate_python(data)
        return validator.model_validate(data)
    except ValidationError as e:
        logger.error("Contract violation in %s: %s", stage, e)
        raise StageContractError(stage=stage, detail=detail) from e


def _extract_image_data_uri(response: Any) -> Optional[str]:
    """Returns the first inline image of a response as a data URI."""
    parts = list(getattr(response, "parts", None) or [])
    candidates = getattr(response, "candidates", None) or []
    if candidates and getattr(candidates[0], "content", None):
        parts.extend(candidates[0].content.parts or [])
    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            b64_str = base64.b64encode(inline.data).decode("utf-8")
            return f"data:{inline.mime_type or 'image/png'};base64,{b64_str}"
    return None


# --- Stage: Character Extraction ---
async def extract_characters(script: str) -> List[Character]:
    prompt = prompts.CHARACTER_EXTRACTION_PROMPT.format(script=script)
    try:
        response = await _generate(settings.text_model, prompt, json_output=True)
        data = _parse_json("characters", response.text)
    except (StageContractError, ConfigurationError):
        raise
    except Exception as e:
        logger.error("Error extracting characters: %s", e)
        raise PipelineStageError(stage="characters", detail="Failed to identify characters from the script.") from e
    envelope = _validate("characters", _CharacterEnvelope, data,
                         "Invalid character data structure received from API.")
    return envelope.characters


# --- Stage: Scene Extraction ---
async def extract_scenes(script: str) -> List[Scene]:
    prompt = prompts.SCENE_EXTRACTION_PROMPT.format(script=script)
    try:
        response = await _generate(settings.text_model, prompt, json_output=True)
        data = _parse_json("scenes", response.text)
    except (StageContractError, ConfigurationError):
        raise
    except Exception as e:
        logger.error("Error extracting scenes: %s", e)
        raise PipelineStageError(stage="scenes", detail="Failed to identify scenes from the script.") from e
    envelope = _validate("scenes", _SceneEnvelope, data, "Invalid scene data structure received from API.")
    return envelope.scenes


# --- Stage: Panel Breakdown ---
async def breakdown_panels(script: str) -> List[PanelSpec]:
    prompt = prompts.PANEL_BREAKDOWN_PROMPT.format(script=script)
    try:
        response = await _generate(settings.fast_text_model, prompt, json_output=True)
        data = _parse_json("breakdown", response.text)
    except (StageContractError, ConfigurationError):
        raise
    except Exception as e:
        logger.error("Error parsing script: %s", e)
        raise PipelineStageError(
            stage="breakdown",
            detail="Failed to parse the script. The script might be too complex or the format is not recognized.",
        ) from e
    return _validate("breakdown", _PANEL_LIST, data, "Invalid panel data structure received from API.")


# --- Stage: Description Enhancement ---
async def _enhance(target: str, prompt: str) -> str:
    try:
        response = await _generate(settings.text_model, prompt)
        text = (response.text or "").strip()
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("Error enhancing description for %s: %s", target, e)
        raise EnhancementError(target=target) from e
    if not text:
        raise EnhancementError(target=target)
    return text


async def enhance_character(character: Character) -> str:
    prompt = prompts.ENHANCE_CHARACTER_PROMPT.format(name=character.name, description=character.description)
    return await _enhance(character.name, prompt)


async def enhance_scene(scene: Scene) -> str:
    prompt = prompts.ENHANCE_SCENE_PROMPT.format(scene_id=scene.id, description=scene.description)
    return await _enhance(scene.id, prompt)


# --- Stage: Image Synthesis ---
def build_panel_prompt(
    description: str,
    character_descriptions: List[str],
    scene_description: str,
    style_prompt: str,
    aspect_ratio: AspectRatio,
    shot_type: Optional[str] = None,
) -> str:
    characters = ""
    if character_descriptions:
        characters = (
            "Characters present (must be visually consistent with descriptions): "
            f"{' '.join(character_descriptions)}."
        )
    return prompts.PANEL_IMAGE_PROMPT.format(
        style=style_prompt,
        shot=f'Shot Type: "{shot_type}".' if shot_type else "",
        description=description,
        scene=scene_description,
        characters=characters,
        aspect_ratio=aspect_ratio,
    )


async def synthesize_panel_image(
    description: str,
    character_descriptions: List[str],
    scene_description: str,
    style_prompt: str,
    aspect_ratio: AspectRatio,
    shot_type: Optional[str] = None,
) -> str:
    """Generates one panel image and returns it as a data URI."""
    full_prompt = build_panel_prompt(
        description, character_descriptions, scene_description, style_prompt, aspect_ratio, shot_type
    )
    try:
        response = await _generate(settings.image_model, full_prompt)
        image = _extract_image_data_uri(response)
        if not image:
            raise ValueError("No image was generated.")
        return image
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("Image gen error: %s", e)
        raise PipelineStageError(
            stage="panel",
            detail=f'Failed to generate an image for the description: "{description}". Reason: {e}',
        ) from e


async def synthesize_cover(script_excerpt: str, style_prompt: str) -> str:
    """Generates the cover image (always 3:4) and returns it as a data URI."""
    full_prompt = prompts.COVER_IMAGE_PROMPT.format(summary=script_excerpt, style=style_prompt)
    try:
        response = await _generate(settings.image_model, full_prompt)
        image = _extract_image_data_uri(response)
        if not image:
            raise ValueError("No cover image was generated.")
        return image
    except ConfigurationError:
        raise
    except Exception as e:
        logger.error("Error generating cover image: %s", e)
        raise PipelineStageError(stage="cover", detail=f"Failed to generate a cover image. Reason: {e}") from e


# --- Stage: Page Layout ---
async def layout_pages(panel_descriptions: List[str]) -> List[PageLayout]:
    prompt = prompts.PAGE_LAYOUT_PROMPT.format(
        panel_descriptions=json.dumps(panel_descriptions, ensure_ascii=False),
        layouts=", ".join(f"'{tag}'" for tag in LAYOUT_TAGS),
    )
    try:
        response = await _generate(settings.fast_text_model, prompt, json_output=True)
        data = _parse_json("layout", response.text)
    except (StageContractError, ConfigurationError):
        raise
    except Exception as e:
        logger.error("Error creating page layouts: %s", e)
        raise PipelineStageError(stage="layout", detail=f"Failed to create comic book page layouts. Reason: {e}") from e
    return _validate("layout", _LAYOUT_LIST, data, "Invalid page layout data structure received from API.")
