from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Enumerations ---
AspectRatio = Literal['1:1', '3:4', '4:3']

LayoutTag = Literal['2x1', '1x2', '2x2', '3_strip_vertical', '2_over_1', '1_over_2']

LAYOUT_TAGS = ('2x1', '1x2', '2x2', '3_strip_vertical', '2_over_1', '1_over_2')


class AppStage(str, Enum):
    SETUP = "setup"
    GENERATING = "generating"
    CHARACTER_REVIEW = "character_review"
    SCENE_REVIEW = "scene_review"
    DISPLAY = "display"


class GenerationPhase(str, Enum):
    EXTRACT = "extract"
    RENDER = "render"


# --- Story Entities ---
class Character(BaseModel):
    name: str  # Stable key, never edited during review
    description: str = ""


class Scene(BaseModel):
    id: str  # Scene heading from the script, e.g. "INT. OLD LIBRARY - NIGHT"
    description: str = ""


class PanelSpec(BaseModel):
    """One planned panel, as returned by the breakdown stage."""
    model_config = ConfigDict(frozen=True)

    sceneId: str
    description: str
    characters: List[str] = Field(default_factory=list)
    shotType: Optional[str] = None


class Panel(BaseModel):
    """A generated panel image."""
    model_config = ConfigDict(frozen=True)

    description: str
    imageUrl: str


class PageLayout(BaseModel):
    panel_indices: List[int]
    layout: LayoutTag


class ComicPage(BaseModel):
    layout: LayoutTag
    panels: List[Panel] = Field(default_factory=list)


# --- Run Configuration ---
class ArtStyle(BaseModel):
    id: str
    name: str
    imageUrl: str = ""
    prompt: str


class GenerationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    style: ArtStyle
    aspectRatio: AspectRatio = '3:4'


class Progress(BaseModel):
    current: int = 0
    total: int = 1
    message: str = ""


# --- Persistence ---
class ProjectData(BaseModel):
    title: str
    script: str
    artStyle: ArtStyle
    aspectRatio: AspectRatio
    characters: List[Character] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    comicPages: List[ComicPage] = Field(default_factory=list)
    coverImageUrl: Optional[str] = None


class Project(ProjectData):
    id: str
    userId: str
    createdAt: datetime


class UserIdentity(BaseModel):
    uid: str
    displayName: str
    photoURL: Optional[str] = None


# --- UI Support ---
class LogEntry(BaseModel):
    id: str
    message: str
    timestamp: datetime
    type: Literal['info', 'success', 'error']


class ChatMessage(BaseModel):
    id: int
    text: str
    sender: Literal['user', 'bot']
