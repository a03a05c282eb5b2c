import json
import os
import tempfile
import time
from typing import Dict, List, Tuple

import gradio as gr
import httpx

from config import ART_STYLES, settings
from services.export import load_image

# --- Configuration ---
API_URL = settings.api_url
client = httpx.Client(timeout=300.0)  # Enhancement calls can be slow
POLL_SECONDS = 2


# --- API Wrapper Functions ---
def _detail(e: Exception) -> str:
    if isinstance(e, httpx.HTTPStatusError):
        try:
            return e.response.json().get("detail", str(e))
        except ValueError:
            return e.response.text
    return str(e)


def get_state() -> Dict:
    response = client.get(f"{API_URL}/comic/state/")
    response.raise_for_status()
    return response.json()


def get_logs_text() -> str:
    try:
        response = client.get(f"{API_URL}/logs/")
        response.raise_for_status()
        logs = response.json()
        logs.reverse()
        return "\n".join(f"[{log['timestamp']}] {log['message']}" for log in logs)
    except Exception:
        return "Waiting for logs..."


def _images(urls: List[str], labels: List[str]) -> List[Tuple]:
    items = []
    for url, label in zip(urls, labels):
        try:
            items.append((load_image(url), label))
        except Exception:
            continue
    return items


def _panel_gallery(snapshot: Dict) -> List[Tuple]:
    panels = snapshot.get("panels", [])
    return _images([p["imageUrl"] for p in panels], [f"Panel {i + 1}" for i in range(len(panels))])


def _page_gallery(snapshot: Dict) -> List[Tuple]:
    urls, labels = [], []
    if snapshot.get("cover_image_url"):
        urls.append(snapshot["cover_image_url"])
        labels.append("Cover")
    for page_no, page in enumerate(snapshot.get("pages", []), start=1):
        for panel_no, panel in enumerate(page["panels"], start=1):
            urls.append(panel["imageUrl"])
            labels.append(f"Page {page_no} ({page['layout']}) - panel {panel_no}")
    return _images(urls, labels)


def _progress_text(snapshot: Dict) -> str:
    if snapshot.get("error"):
        return f"Error: {snapshot['error']}"
    progress = snapshot["progress"]
    return f"**{snapshot['stage']}** - {progress['message']} ({progress['current']}/{progress['total']})"


# Auth
def sign_in_api(name: str) -> str:
    try:
        response = client.post(f"{API_URL}/auth/sign-in/", json={"displayName": name})
        response.raise_for_status()
        return f"Signed in as {response.json()['displayName']}"
    except Exception as e:
        return f"Sign-in failed: {_detail(e)}"


def sign_out_api() -> str:
    client.post(f"{API_URL}/auth/sign-out/")
    return "Signed out."


# Step 1: Script
def read_script_file(file_path: str) -> str:
    if not file_path:
        return ""
    with open(file_path, "rb") as f:
        files = {"file": (os.path.basename(file_path), f, "text/plain")}
        response = client.post(f"{API_URL}/script/upload/", files=files)
    response.raise_for_status()
    return response.json()["script"]


def start_comic_api(script: str, style_name: str, aspect_ratio: str):
    style_id = next((s.id for s in ART_STYLES if s.name == style_name), "")
    try:
        response = client.post(
            f"{API_URL}/comic/start/",
            json={"script_text": script, "style_id": style_id, "aspect_ratio": aspect_ratio},
        )
        response.raise_for_status()
    except Exception as e:
        yield f"Could not start: {_detail(e)}", "", ""
        return
    yield from _poll_until_settled()


def _poll_until_settled():
    """Polls the pipeline while it is generating and yields (status, characters, scenes)."""
    while True:
        snapshot = get_state()
        yield (
            _progress_text(snapshot),
            json.dumps(snapshot["characters"], indent=2, ensure_ascii=False),
            json.dumps(snapshot["scenes"], indent=2, ensure_ascii=False),
        )
        if snapshot["stage"] != "generating":
            break
        time.sleep(POLL_SECONDS)


# Steps 2-3: Review
def enhance_api(kind: str, index: float) -> Tuple[str, str]:
    try:
        response = client.post(f"{API_URL}/comic/{kind}/{int(index)}/enhance/")
        response.raise_for_status()
        message = f"Enhanced {kind[:-1]} #{int(index)}."
    except Exception as e:
        message = f"Enhancement failed: {_detail(e)}"
    snapshot = get_state()
    return json.dumps(snapshot[kind], indent=2, ensure_ascii=False), message


def confirm_characters_api(characters_json: str) -> str:
    try:
        characters = json.loads(characters_json) if characters_json.strip() else None
        response = client.post(f"{API_URL}/comic/characters/confirm/", json={"characters": characters})
        response.raise_for_status()
        return "Characters confirmed. Review the scenes next."
    except Exception as e:
        return f"Could not confirm characters: {_detail(e)}"


def confirm_scenes_api(scenes_json: str):
    try:
        scenes = json.loads(scenes_json) if scenes_json.strip() else None
        response = client.post(f"{API_URL}/comic/scenes/confirm/", json={"scenes": scenes})
        response.raise_for_status()
    except Exception as e:
        yield f"Could not start generation: {_detail(e)}", [], get_logs_text()
        return
    while True:
        snapshot = get_state()
        settled = snapshot["stage"] != "generating"
        gallery = _page_gallery(snapshot) if snapshot["stage"] == "display" else _panel_gallery(snapshot)
        yield _progress_text(snapshot), gallery, get_logs_text()
        if settled:
            break
        time.sleep(POLL_SECONDS)


# Step 4: Display
def save_api(title: str) -> str:
    try:
        response = client.post(f"{API_URL}/comic/save/", json={"title": title})
        response.raise_for_status()
        return f"Project Saved! (id {response.json()['id']})"
    except Exception as e:
        return f"Save failed: {_detail(e)}"


def download_pdf_api(path: str = "/comic/export.pdf"):
    try:
        response = client.get(f"{API_URL}{path}")
        response.raise_for_status()
    except Exception as e:
        return None, f"Download failed: {_detail(e)}"
    tmp_dir = os.path.join(tempfile.gettempdir(), "comic-exports")
    os.makedirs(tmp_dir, exist_ok=True)
    pdf_path = os.path.join(tmp_dir, f"comic_{int(time.time())}.pdf")
    with open(pdf_path, "wb") as f:
        f.write(response.content)
    return pdf_path, "PDF ready."


def reset_api() -> str:
    client.post(f"{API_URL}/comic/reset/")
    return "Ready for a new comic."


# Dashboard
def list_projects_api() -> Tuple[List[List], str]:
    try:
        response = client.get(f"{API_URL}/projects/")
        response.raise_for_status()
    except Exception as e:
        return [], f"Could not load projects: {_detail(e)}"
    rows = [[p["id"], p["title"], p["createdAt"], len(p["comicPages"])] for p in response.json()]
    return rows, f"{len(rows)} projects."


def delete_project_api(project_id: str) -> Tuple[List[List], str]:
    try:
        response = client.delete(f"{API_URL}/projects/{project_id.strip()}")
        response.raise_for_status()
    except Exception as e:
        rows, _ = list_projects_api()
        return rows, f"Delete failed: {_detail(e)}"
    rows, _ = list_projects_api()
    return rows, "Deleted."


# Assistant
def chat_api(message: str, transcript: str) -> Tuple[str, str]:
    if not message.strip():
        return "", transcript
    try:
        response = client.post(f"{API_URL}/chat/", json={"message": message})
        response.raise_for_status()
        reply = response.json()["text"]
    except Exception:
        reply = "Sorry, I encountered an error. Please try again."
    transcript = f"{transcript}\n\n**You:** {message}\n\n**Assistant:** {reply}".strip()
    return "", transcript


# --- Gradio UI Logic ---
def create_ui():
    style_names = [s.name for s in ART_STYLES]

    with gr.Blocks(title="Comic Script Studio") as demo:
        gr.Markdown("## Comic Script Studio: script → comic book")

        with gr.Row():
            user_name = gr.Textbox(label="Display name", scale=3)
            btn_sign_in = gr.Button("Sign in", scale=1)
            btn_sign_out = gr.Button("Sign out", scale=1)
            auth_status = gr.Markdown()

        with gr.Tabs():
            with gr.Tab("Create"):
                with gr.Row():
                    # --- LEFT COLUMN: Pipeline Control ---
                    with gr.Column(scale=1, variant="panel"):
                        with gr.Group():
                            gr.Markdown("### 1. Choose your art style and panel shape")
                            style = gr.Dropdown(style_names, value=style_names[0], label="Art style")
                            aspect = gr.Radio(["3:4", "4:3", "1:1"], value="3:4", label="Panel shape")

                        with gr.Group():
                            gr.Markdown("### 2. Provide your script")
                            script_file = gr.File(label="Plain Text (.txt)", file_types=[".txt"], type="filepath")
                            script_text = gr.Textbox(lines=12, label="Script", placeholder="Paste your script here...")
                            btn_start = gr.Button("Generate My Comic", variant="primary")

                        with gr.Accordion("3. Review characters", open=True):
                            characters_editor = gr.Code(language="json", label="Characters", lines=12)
                            with gr.Row():
                                char_index = gr.Number(value=0, precision=0, label="Index")
                                btn_enhance_char = gr.Button("Enhance for Consistency", size="sm")
                            btn_confirm_chars = gr.Button("Confirm Characters & Review Scenes")

                        with gr.Accordion("4. Review scenes", open=True):
                            scenes_editor = gr.Code(language="json", label="Scenes", lines=12)
                            with gr.Row():
                                scene_index = gr.Number(value=0, precision=0, label="Index")
                                btn_enhance_scene = gr.Button("Enhance for Consistency", size="sm")
                            btn_confirm_scenes = gr.Button("Confirm & Generate Comic", variant="primary")

                        status = gr.Markdown()

                    # --- RIGHT COLUMN: Output & Logs ---
                    with gr.Column(scale=2):
                        with gr.Tabs():
                            with gr.Tab("Comic"):
                                gallery = gr.Gallery(label="Panels", columns=3, height=900)
                                with gr.Row():
                                    title = gr.Textbox(label="Title", scale=3)
                                    btn_save = gr.Button("Save Project", scale=1)
                                    btn_pdf = gr.Button("Download as PDF", scale=1)
                                    btn_reset = gr.Button("Create Another", scale=1)
                                pdf_file = gr.File(label="PDF")
                                display_status = gr.Markdown()
                            with gr.Tab("Activity log"):
                                logs = gr.Textbox(lines=30, label="Log", interactive=False, autoscroll=True)

            with gr.Tab("My Projects"):
                projects = gr.Dataframe(headers=["id", "title", "created", "pages"], interactive=False)
                with gr.Row():
                    btn_refresh = gr.Button("Refresh")
                    project_id = gr.Textbox(label="Project id")
                    btn_delete = gr.Button("Delete", variant="stop")
                    btn_project_pdf = gr.Button("Download PDF")
                project_pdf = gr.File(label="PDF")
                projects_status = gr.Markdown()

            with gr.Tab("Comic Assistant"):
                transcript = gr.Markdown()
                chat_input = gr.Textbox(label="Message", placeholder="Ask about comics and storytelling...")
                btn_send = gr.Button("Send")

        # --- Event Wiring ---
        btn_sign_in.click(sign_in_api, inputs=user_name, outputs=auth_status)
        btn_sign_out.click(sign_out_api, outputs=auth_status)

        script_file.upload(read_script_file, inputs=script_file, outputs=script_text)
        btn_start.click(
            start_comic_api,
            inputs=[script_text, style, aspect],
            outputs=[status, characters_editor, scenes_editor],
        )

        btn_enhance_char.click(
            lambda i: enhance_api("characters", i), inputs=char_index, outputs=[characters_editor, status]
        )
        btn_enhance_scene.click(
            lambda i: enhance_api("scenes", i), inputs=scene_index, outputs=[scenes_editor, status]
        )
        btn_confirm_chars.click(confirm_characters_api, inputs=characters_editor, outputs=status)
        btn_confirm_scenes.click(confirm_scenes_api, inputs=scenes_editor, outputs=[status, gallery, logs])

        btn_save.click(save_api, inputs=title, outputs=display_status)
        btn_pdf.click(download_pdf_api, outputs=[pdf_file, display_status])
        btn_reset.click(reset_api, outputs=display_status)

        btn_refresh.click(list_projects_api, outputs=[projects, projects_status])
        btn_delete.click(delete_project_api, inputs=project_id, outputs=[projects, projects_status])
        btn_project_pdf.click(
            lambda pid: download_pdf_api(f"/projects/{pid.strip()}/export.pdf"),
            inputs=project_id,
            outputs=[project_pdf, projects_status],
        )

        btn_send.click(chat_api, inputs=[chat_input, transcript], outputs=[chat_input, transcript])
        chat_input.submit(chat_api, inputs=[chat_input, transcript], outputs=[chat_input, transcript])

        demo.load(get_logs_text, outputs=logs)

    return demo


if __name__ == "__main__":
    ui = create_ui()
    ui.launch()
