import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from config import settings
from errors import (
    AuthenticationError,
    InvalidTransitionError,
    PersistenceError,
    PipelineStageError,
    RATE_LIMIT_MESSAGE,
    is_rate_limit_error,
)
from models import (
    AppStage,
    Character,
    ComicPage,
    GenerationConfig,
    GenerationPhase,
    LogEntry,
    Panel,
    PanelSpec,
    Progress,
    ProjectData,
    Scene,
)
from services.layout import resolve_pages
from services.review_store import ReviewStore

logger = logging.getLogger(__name__)

DEFAULT_SHOT_TYPE = "medium shot"
EXTRACT_STEPS = 3
UNKNOWN_ERROR = "An unknown error occurred."


class PipelineContext(BaseModel):
    """The single mutable record of one comic run."""
    stage: AppStage = AppStage.SETUP
    phase: Optional[GenerationPhase] = None
    error: Optional[str] = None
    script: str = ""
    config: Optional[GenerationConfig] = None
    panel_specs: List[PanelSpec] = Field(default_factory=list)
    panels: List[Panel] = Field(default_factory=list)
    pages: List[ComicPage] = Field(default_factory=list)
    cover_image_url: Optional[str] = None
    progress: Progress = Field(default_factory=Progress)
    saved_project_id: Optional[str] = None


class _RunAbandoned(Exception):
    """The run was reset while a remote call was in flight."""


class ComicPipeline:
    """
    Drives a script through extraction, two review checkpoints and rendering.

    SETUP -> GENERATING(extract) -> CHARACTER_REVIEW -> SCENE_REVIEW
          -> GENERATING(render) -> DISPLAY

    Any failure while GENERATING returns to SETUP with a message and drops the
    partial results. Stage calls go through `stages` (the Gemini service module
    by default) one at a time. Observers registered with `subscribe` are
    called with the context after every change.
    """

    def __init__(
        self,
        stages: Any = None,
        review: Optional[ReviewStore] = None,
        panel_delay: Optional[float] = None,
        cover_excerpt_chars: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if stages is None:
            from services import gemini_service as stages
        self.stages = stages
        self.review = review or ReviewStore(stages)
        self.panel_delay = settings.panel_delay if panel_delay is None else panel_delay
        self.cover_excerpt_chars = cover_excerpt_chars or settings.cover_excerpt_chars
        self._sleep = sleep
        self.context = PipelineContext()
        self.logs: List[LogEntry] = []
        self._listeners: List[Callable[[PipelineContext], None]] = []
        self._run_id = 0

    # --- Observation ---
    @property
    def stage(self) -> AppStage:
        return self.context.stage

    @property
    def characters(self) -> List[Character]:
        return self.review.characters

    @property
    def scenes(self) -> List[Scene]:
        return self.review.scenes

    def subscribe(self, listener: Callable[[PipelineContext], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.context)

    def add_log(self, message: str, type: str = "info") -> None:
        self.logs.append(LogEntry(id=str(uuid.uuid4()), message=message, timestamp=datetime.now(), type=type))
        level = logging.ERROR if type == "error" else logging.INFO
        logger.log(level, "[%s] %s", type.upper(), message)

    def snapshot(self) -> Dict[str, Any]:
        data = self.context.model_dump(mode="json")
        data["characters"] = [c.model_dump() for c in self.review.characters]
        data["scenes"] = [s.model_dump() for s in self.review.scenes]
        data["enhancing"] = self.review.enhancing
        return data

    # --- Helpers ---
    def _require(self, *stages: AppStage, phase: Optional[GenerationPhase] = None) -> None:
        if self.context.stage not in stages or (phase is not None and self.context.phase != phase):
            current = self.context.stage.value
            if self.context.phase:
                current += f"({self.context.phase.value})"
            raise InvalidTransitionError(f"Action not allowed while pipeline is in {current}.")

    def _set_progress(self, current: int, total: int, message: str) -> None:
        self.context.progress = Progress(current=current, total=total, message=message)
        self.add_log(message)
        self._notify()

    def _check_run(self, run_id: int) -> None:
        if run_id != self._run_id:
            raise _RunAbandoned()

    def _fail(self, message: str) -> None:
        """Unwinds the whole run back to SETUP; only the user's script and config survive."""
        self.context = PipelineContext(
            stage=AppStage.SETUP,
            error=message,
            script=self.context.script,
            config=self.context.config,
        )
        self.review.clear()
        self.add_log(message, "error")
        self._notify()

    # --- SETUP -> GENERATING(extract) -> CHARACTER_REVIEW ---
    def begin(self, script: str, config: GenerationConfig) -> bool:
        """Validates the submission and enters GENERATING(extract). Returns False if rejected."""
        self._require(AppStage.SETUP)
        script = (script or "").strip()
        if not script:
            self.context.error = "Please provide a script by uploading a file or pasting it into the text box."
            self._notify()
            return False
        self._run_id += 1
        self.review.clear()
        self.context = PipelineContext(
            stage=AppStage.GENERATING,
            phase=GenerationPhase.EXTRACT,
            script=script,
            config=config,
        )
        self.add_log("Starting script analysis.")
        self._notify()
        return True

    async def extract(self) -> PipelineContext:
        self._require(AppStage.GENERATING, phase=GenerationPhase.EXTRACT)
        run_id = self._run_id
        script = self.context.script
        try:
            self._set_progress(1, EXTRACT_STEPS, "Step 1: Analyzing script for characters...")
            characters = await self.stages.extract_characters(script)
            self._check_run(run_id)
            self.review.replace_characters(characters)

            self._set_progress(2, EXTRACT_STEPS, "Step 2: Defining scene styles...")
            scenes = await self.stages.extract_scenes(script)
            self._check_run(run_id)
            self.review.replace_scenes(scenes)

            self._set_progress(3, EXTRACT_STEPS, "Step 3: Breaking script into panels...")
            panel_specs = await self.stages.breakdown_panels(script)
            self._check_run(run_id)
            if not panel_specs:
                raise PipelineStageError(
                    stage="breakdown",
                    detail="Could not extract any panels from the script. Please check the script format.",
                )
        except _RunAbandoned:
            logger.info("Extraction result discarded: run was reset.")
            return self.context
        except Exception as e:
            if run_id != self._run_id:
                return self.context
            logger.exception("Script analysis failed")
            self._fail(str(e) or UNKNOWN_ERROR)
            return self.context

        self.context.panel_specs = [PanelSpec.model_validate(p) for p in panel_specs]
        self.context.stage = AppStage.CHARACTER_REVIEW
        self.context.phase = None
        self.add_log(
            f"Analysis complete: {len(self.review.characters)} characters, {len(self.review.scenes)} scenes, "
            f"{len(panel_specs)} panels.",
            "success",
        )
        self._notify()
        return self.context

    async def start(self, script: str, config: GenerationConfig) -> PipelineContext:
        if self.begin(script, config):
            await self.extract()
        return self.context

    # --- Review checkpoints ---
    def confirm_characters(self, characters: Optional[List[Character]] = None) -> PipelineContext:
        self._require(AppStage.CHARACTER_REVIEW)
        if characters is not None:
            self.review.apply_character_edits(characters)
        self.context.stage = AppStage.SCENE_REVIEW
        self.add_log("Characters confirmed.")
        self._notify()
        return self.context

    def begin_render(self, scenes: Optional[List[Scene]] = None) -> bool:
        """Confirms the scenes and enters GENERATING(render). Returns False if the run had to abort."""
        self._require(AppStage.SCENE_REVIEW)
        if scenes is not None:
            self.review.apply_scene_edits(scenes)
        if not self.context.config or not self.context.panel_specs or not self.context.script:
            self._fail("Generation configuration is missing. Please start over.")
            return False
        self._run_id += 1
        self.context.stage = AppStage.GENERATING
        self.context.phase = GenerationPhase.RENDER
        self.context.error = None
        self.context.panels = []
        self.context.pages = []
        self.context.cover_image_url = None
        self.add_log("Scenes confirmed. Starting image generation.")
        self._notify()
        return True

    # --- GENERATING(render) -> DISPLAY ---
    async def render(self) -> PipelineContext:
        self._require(AppStage.GENERATING, phase=GenerationPhase.RENDER)
        run_id = self._run_id
        ctx = self.context
        specs = ctx.panel_specs
        style_prompt = ctx.config.style.prompt
        total = len(specs) + 2  # panels + cover + layout
        try:
            self._set_progress(1, total, "Generating comic book cover...")
            cover = await self.stages.synthesize_cover(ctx.script[:self.cover_excerpt_chars], style_prompt)
            self._check_run(run_id)
            ctx.cover_image_url = cover

            character_map = {c.name.lower(): c.description for c in self.review.characters}
            scene_map = {s.id.lower(): s.description for s in self.review.scenes}

            for i, spec in enumerate(specs):
                self._set_progress(i + 2, total, f"Generating image for panel {i + 1} of {len(specs)}...")
                character_details = [
                    character_map[name.lower()] for name in spec.characters if character_map.get(name.lower())
                ]
                scene_details = scene_map.get(spec.sceneId.lower(), "")
                image_url = await self.stages.synthesize_panel_image(
                    spec.description,
                    character_details,
                    scene_details,
                    style_prompt,
                    ctx.config.aspectRatio,
                    spec.shotType or DEFAULT_SHOT_TYPE,
                )
                self._check_run(run_id)
                ctx.panels.append(Panel(description=spec.description, imageUrl=image_url))
                self._notify()

                # Fixed pacing between panel calls, independent of retry backoff.
                if i < len(specs) - 1:
                    await self._sleep(self.panel_delay)
                    self._check_run(run_id)

            self._set_progress(total, total, "Arranging panels into comic book pages...")
            layouts = await self.stages.layout_pages([s.description for s in specs])
            self._check_run(run_id)
            pages = resolve_pages(layouts, ctx.panels)
        except _RunAbandoned:
            logger.info("Render result discarded: run was reset.")
            return self.context
        except Exception as e:
            if run_id != self._run_id:
                return self.context
            logger.exception("Comic generation failed")
            self._fail(RATE_LIMIT_MESSAGE if is_rate_limit_error(e) else (str(e) or UNKNOWN_ERROR))
            return self.context

        ctx.pages = pages
        ctx.stage = AppStage.DISPLAY
        ctx.phase = None
        self.add_log(f"Comic ready: {len(pages)} pages.", "success")
        self._notify()
        return ctx

    async def confirm_scenes(self, scenes: Optional[List[Scene]] = None) -> PipelineContext:
        if self.begin_render(scenes):
            await self.render()
        return self.context

    # --- DISPLAY ---
    def build_project_data(self, title: str) -> ProjectData:
        ctx = self.context
        return ProjectData(
            title=title,
            script=ctx.script,
            artStyle=ctx.config.style,
            aspectRatio=ctx.config.aspectRatio,
            characters=[c.model_copy() for c in self.review.characters],
            scenes=[s.model_copy() for s in self.review.scenes],
            comicPages=list(ctx.pages),
            coverImageUrl=ctx.cover_image_url,
        )

    def save(self, title: str, owner_id: Optional[str], store: Any) -> str:
        """Hands the finished comic to the project store. A run is saved at most once."""
        self._require(AppStage.DISPLAY)
        if self.context.saved_project_id:
            return self.context.saved_project_id
        if not owner_id:
            raise AuthenticationError("User or generation config not available.")
        title = (title or "").strip()
        if not title:
            raise ValueError("Please enter a title for your comic.")

        data = self.build_project_data(title)
        try:
            project_id = store.save_project(owner_id, data)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("Sorry, there was an error saving your project. Please try again.") from e
        self.context.saved_project_id = project_id
        self.add_log(f"Project '{title}' saved.", "success")
        self._notify()
        return project_id

    def reset(self) -> PipelineContext:
        """Discards everything and returns to SETUP. An in-flight call's result is ignored."""
        self._run_id += 1
        self.context = PipelineContext()
        self.review.clear()
        self.add_log("Pipeline reset.")
        self._notify()
        return self.context
