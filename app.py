import logging
from typing import List, Optional

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from config import ART_STYLES, find_art_style, settings
from errors import (
    AuthenticationError,
    ConfigurationError,
    EnhancementError,
    InvalidTransitionError,
    PersistenceError,
)
from models import (
    AppStage,
    ArtStyle,
    AspectRatio,
    Character,
    ChatMessage,
    GenerationConfig,
    LogEntry,
    Project,
    Scene,
    UserIdentity,
)
from services.chat_service import ChatSession
from services.export import build_comic_pdf
from services.identity import IdentityProvider
from services.pipeline import ComicPipeline
from services.project_store import ProjectStore

# --- Logging Setup ---
logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Application Setup ---
app = FastAPI(
    title="Comic Script Studio",
    description="Turn a prose script into an illustrated comic book with Gemini.",
    version="1.0.0",
)


# --- In-Memory State Management ---
class AppState:
    def __init__(self):
        self.identity = IdentityProvider()
        self.pipeline = ComicPipeline()
        self.store = ProjectStore(settings.database_url)
        self.chat = ChatSession()

    def require_user(self) -> UserIdentity:
        try:
            return self.identity.require_user()
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e))


state = AppState()


# --- Request Models ---
class SignInRequest(BaseModel):
    displayName: str
    uid: Optional[str] = None
    photoURL: Optional[str] = None


class StartRequest(BaseModel):
    script_text: str
    style_id: str
    aspect_ratio: AspectRatio = '3:4'


class DescriptionUpdateRequest(BaseModel):
    description: str


class CharactersConfirmRequest(BaseModel):
    characters: Optional[List[Character]] = None


class ScenesConfirmRequest(BaseModel):
    scenes: Optional[List[Scene]] = None


class SaveRequest(BaseModel):
    title: str


class ChatRequest(BaseModel):
    message: str


def _transition_error(e: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


# --- API Endpoints ---
@app.get("/", summary="Check server status.")
def read_root():
    return {"message": "Comic Script Studio is running.", "stage": state.pipeline.stage.value}


@app.get("/art-styles/", response_model=List[ArtStyle])
def get_art_styles():
    return ART_STYLES


# Auth
@app.post("/auth/sign-in/", response_model=UserIdentity)
def sign_in(payload: SignInRequest):
    try:
        return state.identity.sign_in(payload.displayName, uid=payload.uid, photo_url=payload.photoURL)
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/auth/sign-out/")
def sign_out():
    state.identity.sign_out()
    return {"message": "Signed out."}


@app.get("/auth/me/", response_model=Optional[UserIdentity])
def get_current_user():
    return state.identity.current_user


# 1. Script upload
@app.post("/script/upload/", summary="Read a plain-text script file.")
async def upload_script(file: UploadFile = File(...)):
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file name provided.")
    is_text = (file.content_type or "").startswith("text/plain") or file.filename.lower().endswith(".txt")
    if not is_text:
        raise HTTPException(status_code=400, detail="Please upload a valid .txt file.")
    contents = await file.read()
    try:
        script = contents.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Script file must be UTF-8 text.")
    state.pipeline.add_log(f"Script file loaded: {file.filename}", "success")
    return {"filename": file.filename, "script": script}


# 2. Extraction (SETUP -> GENERATING -> CHARACTER_REVIEW)
@app.post("/comic/start/", summary="Analyze the script (runs in background).")
def start_comic(payload: StartRequest, background_tasks: BackgroundTasks):
    state.require_user()
    style = find_art_style(payload.style_id)
    if not style:
        raise HTTPException(status_code=400, detail="Please select a valid art style.")
    config = GenerationConfig(style=style, aspectRatio=payload.aspect_ratio)
    try:
        accepted = state.pipeline.begin(payload.script_text, config)
    except InvalidTransitionError as e:
        raise _transition_error(e)
    if not accepted:
        raise HTTPException(status_code=400, detail=state.pipeline.context.error)
    background_tasks.add_task(state.pipeline.extract)
    return {"message": "Script analysis started."}


@app.get("/comic/state/")
def get_comic_state():
    return state.pipeline.snapshot()


# 3. Character review
@app.put("/comic/characters/{index}", response_model=Character)
def update_character(index: int, payload: DescriptionUpdateRequest):
    state.require_user()
    _require_review_stage(AppStage.CHARACTER_REVIEW)
    try:
        return state.pipeline.review.update_character_description(index, payload.description)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/comic/characters/{index}/enhance/", response_model=Character)
async def enhance_character(index: int):
    state.require_user()
    _require_review_stage(AppStage.CHARACTER_REVIEW)
    try:
        return await state.pipeline.review.enhance_character(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (EnhancementError, ConfigurationError) as e:
        raise _enhancement_error(e)


@app.post("/comic/characters/confirm/")
def confirm_characters(payload: Optional[CharactersConfirmRequest] = None):
    state.require_user()
    try:
        state.pipeline.confirm_characters(payload.characters if payload else None)
    except InvalidTransitionError as e:
        raise _transition_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return state.pipeline.snapshot()


# 4. Scene review
@app.put("/comic/scenes/{index}", response_model=Scene)
def update_scene(index: int, payload: DescriptionUpdateRequest):
    state.require_user()
    _require_review_stage(AppStage.SCENE_REVIEW)
    try:
        return state.pipeline.review.update_scene_description(index, payload.description)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/comic/scenes/{index}/enhance/", response_model=Scene)
async def enhance_scene(index: int):
    state.require_user()
    _require_review_stage(AppStage.SCENE_REVIEW)
    try:
        return await state.pipeline.review.enhance_scene(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (EnhancementError, ConfigurationError) as e:
        raise _enhancement_error(e)


# 5. Rendering (SCENE_REVIEW -> GENERATING -> DISPLAY)
@app.post("/comic/scenes/confirm/", summary="Confirm scenes and generate the comic (runs in background).")
def confirm_scenes(background_tasks: BackgroundTasks, payload: Optional[ScenesConfirmRequest] = None):
    state.require_user()
    try:
        started = state.pipeline.begin_render(payload.scenes if payload else None)
    except InvalidTransitionError as e:
        raise _transition_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not started:
        raise HTTPException(status_code=400, detail=state.pipeline.context.error)
    background_tasks.add_task(state.pipeline.render)
    return {"message": "Comic generation started."}


# 6. Display
@app.post("/comic/save/")
def save_comic(payload: SaveRequest):
    user = state.require_user()
    try:
        project_id = state.pipeline.save(payload.title, user.uid, state.store)
    except InvalidTransitionError as e:
        raise _transition_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        state.pipeline.add_log(str(e), "error")
        raise HTTPException(status_code=502, detail=str(e))
    return {"id": project_id}


@app.post("/comic/reset/")
def reset_comic():
    state.pipeline.reset()
    return state.pipeline.snapshot()


@app.get("/comic/export.pdf")
def export_comic():
    ctx = state.pipeline.context
    if not ctx.pages:
        raise HTTPException(status_code=400, detail="No comic to export.")
    return _pdf_response(build_comic_pdf(ctx.pages, ctx.cover_image_url))


# --- Dashboard ---
@app.get("/projects/", response_model=List[Project])
def list_projects():
    user = state.require_user()
    try:
        return state.store.list_projects(user.uid)
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.delete("/projects/{project_id}")
def delete_project(project_id: str):
    _owned_project(project_id)
    try:
        state.store.delete_project(project_id)
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"message": "Deleted"}


@app.get("/projects/{project_id}/export.pdf")
def export_project(project_id: str):
    project = _owned_project(project_id)
    return _pdf_response(build_comic_pdf(project.comicPages, project.coverImageUrl))


# --- Assistant ---
@app.post("/chat/", response_model=ChatMessage)
async def chat(payload: ChatRequest):
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is empty.")
    return await state.chat.send(payload.message)


@app.get("/chat/", response_model=List[ChatMessage])
def get_chat_messages():
    return state.chat.messages


@app.get("/logs/", response_model=List[LogEntry])
def get_logs():
    return state.pipeline.logs


# --- Helpers ---
def _require_review_stage(stage: AppStage):
    if state.pipeline.stage is not stage:
        raise HTTPException(status_code=409, detail=f"This can only be edited during {stage.value.replace('_', ' ')}.")


def _enhancement_error(e: Exception) -> HTTPException:
    state.pipeline.add_log(str(e), "error")
    status = 503 if isinstance(e, ConfigurationError) else 502
    return HTTPException(status_code=status, detail=str(e))


def _owned_project(project_id: str) -> Project:
    user = state.require_user()
    try:
        project = state.store.get_project(project_id)
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not project or project.userId != user.uid:
        raise HTTPException(status_code=404, detail="Project not found.")
    return project


def _pdf_response(pdf_bytes: bytes) -> Response:
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="comic-book.pdf"'},
    )

# --- Mount Gradio UI ---
if settings.mount_gradio_ui:
    from gradio import mount_gradio_app
    from ui import create_ui

    app = mount_gradio_app(app, create_ui(), path="/ui")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
