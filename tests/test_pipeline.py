"""Pipeline state machine driven end to end against offline stages."""

import asyncio

import pytest

from config import ART_STYLES
from errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidTransitionError,
    PersistenceError,
    RATE_LIMIT_MESSAGE,
    StageContractError,
)
from models import AppStage, Character, GenerationConfig, GenerationPhase, PageLayout, PanelSpec, Scene
from services.pipeline import ComicPipeline
from services.project_store import ProjectStore
from tests.fakes import SCRIPT, FakeStages, RecordingSleep

CONFIG = GenerationConfig(style=ART_STYLES[0], aspectRatio="3:4")


def _pipeline(stages, sleep=None, **kwargs):
    return ComicPipeline(stages=stages, panel_delay=1.2, sleep=sleep or RecordingSleep(), **kwargs)


def _run_to_display(pipeline, script=SCRIPT):
    asyncio.run(pipeline.start(script, CONFIG))
    pipeline.confirm_characters()
    asyncio.run(pipeline.confirm_scenes())
    return pipeline.context


def test_script_reaches_display_with_cover_and_pages(stages):
    pipeline = _pipeline(stages)

    asyncio.run(pipeline.start(SCRIPT, CONFIG))
    assert pipeline.stage is AppStage.CHARACTER_REVIEW
    assert [c.name for c in pipeline.characters] == ["John"]
    assert [s.id for s in pipeline.scenes] == ["INT. ROOM — DAY"]
    assert len(pipeline.context.panel_specs) == 2

    pipeline.confirm_characters()
    assert pipeline.stage is AppStage.SCENE_REVIEW

    ctx = asyncio.run(pipeline.confirm_scenes())

    assert ctx.stage is AppStage.DISPLAY
    assert ctx.error is None
    assert ctx.cover_image_url == "data:image/png;base64,COVER"
    assert [p.imageUrl for p in ctx.panels] == ["data:image/png;base64,PANEL0", "data:image/png;base64,PANEL1"]
    assert len(ctx.pages) == 1
    assert len(ctx.pages[0].panels) == 2
    assert ctx.pages[0].layout == "2x2"
    assert ctx.progress.current == ctx.progress.total == 4


def test_extract_progress_messages_are_reported_in_order(stages):
    pipeline = _pipeline(stages)
    messages = []
    pipeline.subscribe(lambda ctx: messages.append(ctx.progress.message))

    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    steps = [m for m in dict.fromkeys(messages) if m.startswith("Step")]
    assert steps == [
        "Step 1: Analyzing script for characters...",
        "Step 2: Defining scene styles...",
        "Step 3: Breaking script into panels...",
    ]


def test_empty_script_is_rejected_without_remote_calls(stages):
    pipeline = _pipeline(stages)

    ctx = asyncio.run(pipeline.start("   \n", CONFIG))

    assert ctx.stage is AppStage.SETUP
    assert "provide a script" in ctx.error
    assert stages.calls == []


def test_zero_panels_returns_to_setup_without_review(stages):
    stages.panels = []
    pipeline = _pipeline(stages)
    seen = []
    pipeline.subscribe(lambda ctx: seen.append(ctx.stage))

    ctx = asyncio.run(pipeline.start(SCRIPT, CONFIG))

    assert ctx.stage is AppStage.SETUP
    assert ctx.error.startswith("Could not extract any panels")
    assert AppStage.CHARACTER_REVIEW not in seen
    assert pipeline.characters == []
    assert ctx.script == SCRIPT
    assert ctx.config == CONFIG


def test_extraction_failure_keeps_script_and_config(stages):
    stages.fail("extract_scenes", StageContractError(stage="scenes", detail="Failed to analyze scene styles."))
    pipeline = _pipeline(stages)

    ctx = asyncio.run(pipeline.start(SCRIPT, CONFIG))

    assert ctx.stage is AppStage.SETUP
    assert ctx.phase is None
    assert ctx.error == "Failed to analyze scene styles."
    assert pipeline.characters == []
    assert ctx.script == SCRIPT
    assert stages.calls_to("breakdown_panels") == []


def test_panels_are_generated_in_order_with_fixed_pacing():
    specs = [PanelSpec(sceneId="INT. ROOM — DAY", description=f"beat {i}") for i in range(5)]
    stages = FakeStages(panels=specs)
    sleep = RecordingSleep()
    pipeline = _pipeline(stages, sleep=sleep)

    ctx = _run_to_display(pipeline)

    panel_calls = stages.calls_to("synthesize_panel_image")
    assert [c[1] for c in panel_calls] == [f"beat {i}" for i in range(5)]
    assert [p.description for p in ctx.panels] == [f"beat {i}" for i in range(5)]
    assert sleep.delays == [1.2] * 4
    assert [c[0] for c in stages.calls[-7:]] == (
        ["synthesize_cover"] + ["synthesize_panel_image"] * 5 + ["layout_pages"]
    )


def test_panels_become_visible_one_at_a_time(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))
    pipeline.confirm_characters()
    counts = []
    pipeline.subscribe(lambda ctx: counts.append(len(ctx.panels)))

    asyncio.run(pipeline.confirm_scenes())

    assert 1 in counts and 2 in counts
    assert counts.index(1) < counts.index(2)


def test_character_and_scene_lookup_is_case_insensitive():
    stages = FakeStages(
        characters=[
            Character(name="John", description="tall"),
            Character(name="Mara", description=""),
        ],
        scenes=[Scene(id="INT. ROOM — DAY", description="sunlit room")],
        panels=[
            PanelSpec(sceneId="int. room — day", description="they talk", characters=["JOHN", "Ghost", "mara"]),
            PanelSpec(sceneId="EXT. NOWHERE", description="empty street", shotType="close-up"),
        ],
    )
    pipeline = _pipeline(stages)

    _run_to_display(pipeline)

    first, second = stages.calls_to("synthesize_panel_image")
    # (stage, description, characters, scene, style, aspect, shot)
    assert first[2] == ["tall"]
    assert first[3] == "sunlit room"
    assert first[6] == "medium shot"
    assert second[2] == []
    assert second[3] == ""
    assert second[6] == "close-up"
    assert first[4] == CONFIG.style.prompt
    assert first[5] == "3:4"


def test_cover_uses_script_excerpt(stages):
    pipeline = _pipeline(stages, cover_excerpt_chars=10)
    script = "A" * 30

    _run_to_display(pipeline, script=script)

    (cover_call,) = stages.calls_to("synthesize_cover")
    assert cover_call[1] == "A" * 10
    assert cover_call[2] == CONFIG.style.prompt


def test_review_edits_reach_image_requests(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))
    pipeline.review.update_character_description(0, "Edited John")
    pipeline.confirm_characters()
    pipeline.review.update_scene_description(0, "Edited room")

    asyncio.run(pipeline.confirm_scenes())

    for call in stages.calls_to("synthesize_panel_image"):
        assert call[2] == ["Edited John"]
        assert call[3] == "Edited room"


def test_confirm_takes_descriptions_from_reviewed_lists(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    pipeline.confirm_characters([Character(name="John", description="Replaced")])
    asyncio.run(pipeline.confirm_scenes([Scene(id="INT. ROOM — DAY", description="Replaced room")]))

    call = stages.calls_to("synthesize_panel_image")[0]
    assert call[2] == ["Replaced"]
    assert call[3] == "Replaced room"


def test_rate_limited_render_shows_friendly_message_and_discards_output(stages):
    stages.fail("synthesize_panel_image", RuntimeError("429 RESOURCE_EXHAUSTED"))
    pipeline = _pipeline(stages)

    ctx = _run_to_display(pipeline)

    assert ctx.stage is AppStage.SETUP
    assert ctx.error == RATE_LIMIT_MESSAGE
    assert ctx.panels == []
    assert ctx.cover_image_url is None
    assert ctx.pages == []
    assert pipeline.characters == []
    assert ctx.script == SCRIPT


def test_other_render_failure_surfaces_raw_message(stages):
    stages.fail("layout_pages", RuntimeError("layout backend down"))
    pipeline = _pipeline(stages)

    ctx = _run_to_display(pipeline)

    assert ctx.stage is AppStage.SETUP
    assert ctx.error == "layout backend down"
    assert ctx.panels == []


def test_render_without_panel_specs_aborts(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))
    pipeline.confirm_characters()
    pipeline.context.panel_specs = []

    ctx = asyncio.run(pipeline.confirm_scenes())

    assert ctx.stage is AppStage.SETUP
    assert ctx.error == "Generation configuration is missing. Please start over."
    assert stages.calls_to("synthesize_cover") == []


def test_out_of_range_layout_index_is_dropped():
    stages = FakeStages(layouts=[PageLayout(panel_indices=[0, 1, 9], layout="3_strip_vertical")])
    pipeline = _pipeline(stages)

    ctx = _run_to_display(pipeline)

    assert ctx.stage is AppStage.DISPLAY
    assert len(ctx.pages[0].panels) == 2


@pytest.mark.parametrize(
    "action",
    [
        lambda p: p.confirm_characters(),
        lambda p: p.begin_render(),
        lambda p: asyncio.run(p.extract()),
        lambda p: asyncio.run(p.render()),
        lambda p: p.save("Title", "user-1", ProjectStore("sqlite://")),
    ],
)
def test_actions_out_of_order_are_rejected(stages, action):
    pipeline = _pipeline(stages)

    with pytest.raises(InvalidTransitionError):
        action(pipeline)
    assert pipeline.stage is AppStage.SETUP


def test_start_is_rejected_while_reviewing(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    with pytest.raises(InvalidTransitionError):
        pipeline.begin(SCRIPT, CONFIG)


def test_save_is_idempotent():
    store = ProjectStore("sqlite://")
    pipeline = _pipeline(FakeStages())
    _run_to_display(pipeline)

    first = pipeline.save("My Comic", "user-1", store)
    second = pipeline.save("My Comic", "user-1", store)

    assert first == second
    assert len(store.list_projects("user-1")) == 1
    saved = store.get_project(first)
    assert saved.title == "My Comic"
    assert saved.characters[0].name == "John"
    assert len(saved.comicPages) == 1


def test_save_requires_owner_and_title(stages):
    store = ProjectStore("sqlite://")
    pipeline = _pipeline(stages)
    _run_to_display(pipeline)

    with pytest.raises(AuthenticationError):
        pipeline.save("My Comic", None, store)
    with pytest.raises(ValueError):
        pipeline.save("  ", "user-1", store)
    assert pipeline.context.saved_project_id is None


def test_store_failure_is_wrapped_and_comic_kept(stages):
    class BrokenStore:
        def save_project(self, user_id, data):
            raise OSError("disk full")

    pipeline = _pipeline(stages)
    _run_to_display(pipeline)

    with pytest.raises(PersistenceError):
        pipeline.save("My Comic", "user-1", BrokenStore())
    assert pipeline.stage is AppStage.DISPLAY
    assert pipeline.context.saved_project_id is None


def test_reset_returns_to_setup_and_clears_everything(stages):
    pipeline = _pipeline(stages)
    _run_to_display(pipeline)

    ctx = pipeline.reset()

    assert ctx.stage is AppStage.SETUP
    assert ctx.script == ""
    assert ctx.panels == [] and ctx.pages == []
    assert pipeline.characters == [] and pipeline.scenes == []


def test_reset_during_extract_discards_late_result():
    class SlowStages(FakeStages):
        def __init__(self):
            super().__init__()
            self.gate = None
            self.entered = None

        async def extract_characters(self, script):
            self.entered.set()
            await self.gate.wait()
            return await super().extract_characters(script)

    stages = SlowStages()
    pipeline = _pipeline(stages)

    async def scenario():
        stages.gate = asyncio.Event()
        stages.entered = asyncio.Event()
        assert pipeline.begin(SCRIPT, CONFIG)
        task = asyncio.create_task(pipeline.extract())
        await stages.entered.wait()
        pipeline.reset()
        stages.gate.set()
        return await task

    ctx = asyncio.run(scenario())

    assert ctx.stage is AppStage.SETUP
    assert ctx.phase is None
    assert ctx.error is None
    assert pipeline.characters == []
    assert stages.calls_to("extract_scenes") == []


def test_unsubscribe_stops_notifications(stages):
    pipeline = _pipeline(stages)
    seen = []
    unsubscribe = pipeline.subscribe(lambda ctx: seen.append(ctx.stage))
    unsubscribe()

    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    assert seen == []


def test_snapshot_reports_review_data(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    snap = pipeline.snapshot()

    assert snap["stage"] == "character_review"
    assert snap["characters"][0]["name"] == "John"
    assert snap["scenes"][0]["id"] == "INT. ROOM — DAY"
    assert snap["enhancing"] is None


def test_begin_enters_extract_phase(stages):
    pipeline = _pipeline(stages)

    assert pipeline.begin(SCRIPT, CONFIG)

    assert pipeline.stage is AppStage.GENERATING
    assert pipeline.context.phase is GenerationPhase.EXTRACT
    assert pipeline.logs[-1].message == "Starting script analysis."


def test_character_confirm_cannot_rename_or_add(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))

    with pytest.raises(ValueError, match="Only descriptions can be edited"):
        pipeline.confirm_characters([Character(name="Renamed"), Character(name="Extra")])

    assert pipeline.stage is AppStage.CHARACTER_REVIEW
    assert [(c.name, c.description) for c in pipeline.characters] == [("John", "A tall man in a grey raincoat.")]


def test_scene_confirm_cannot_change_scene_ids(stages):
    pipeline = _pipeline(stages)
    asyncio.run(pipeline.start(SCRIPT, CONFIG))
    pipeline.confirm_characters()

    with pytest.raises(ValueError, match="changed from 'INT. ROOM — DAY' to 'OTHER'"):
        asyncio.run(pipeline.confirm_scenes([Scene(id="OTHER", description="x")]))

    assert pipeline.stage is AppStage.SCENE_REVIEW
    assert [s.id for s in pipeline.scenes] == ["INT. ROOM — DAY"]
    assert stages.calls_to("synthesize_cover") == []


def test_missing_api_key_reaches_the_user(stages):
    stages.fail("extract_characters", ConfigurationError("API_KEY or GEMINI_API_KEY not found in .env file."))
    pipeline = _pipeline(stages)

    ctx = asyncio.run(pipeline.start(SCRIPT, CONFIG))

    assert ctx.stage is AppStage.SETUP
    assert ctx.error == "API_KEY or GEMINI_API_KEY not found in .env file."
